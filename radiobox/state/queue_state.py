"""
Queue snapshot state.

Immutable, read-only view of the playback queue handed to the transport
layer. Built by PlayoutEngine.snapshot() from copies of its tracks, so a
snapshot never changes after it is taken.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

if TYPE_CHECKING:
    from radiobox.broadcast_core.track import Track


@dataclass(frozen=True)
class QueueSnapshot:
    """
    Snapshot of the playback queue.

    Attributes:
        current: Track currently playing, or None when idle
        queued: Waiting tracks in submission order
        total: Number of waiting tracks
    """
    current: Optional[Track]
    queued: Tuple[Track, ...]
    total: int

    @property
    def is_idle(self) -> bool:
        return self.current is None and self.total == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.to_dict() if self.current else None,
            "queue": [track.to_dict() for track in self.queued],
            "total": self.total,
        }
