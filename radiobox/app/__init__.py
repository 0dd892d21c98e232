"""
Application layer for radiobox.

- RadioService: facade wiring every component from configuration
- RadioHTTPServer: HTTP/WebSocket transport
"""

from radiobox.app.http_server import RadioHTTPServer, make_radio_handler
from radiobox.app.radio_service import RadioService

__all__ = ["RadioHTTPServer", "RadioService", "make_radio_handler"]
