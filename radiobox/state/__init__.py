"""
Read-only state views for radiobox.

Provides the queue snapshot consumed by the transport layer.
"""

from radiobox.state.queue_state import QueueSnapshot

__all__ = ["QueueSnapshot"]
