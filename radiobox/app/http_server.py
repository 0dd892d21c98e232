"""
HTTP and WebSocket transport for radiobox.

Endpoints:
- POST /radio/upload       multipart field "file"
- POST /radio/youtube      JSON {"url": ...}
- GET  /radio/queue        current track, waiting tracks, total
- POST /radio/clear        empty the queue and the sound directory
- GET  /radio/now-playing  current track
- POST /radio/stream       live clip (multipart field "audio" or raw body)
- GET  /chat/messages      recent chat history
- POST /chat/messages      post a chat message
- GET  /chat/ws            chat WebSocket
- GET  /health             liveness
"""

import json
import logging
import socket
import threading
from dataclasses import dataclass
from email import policy
from email.parser import BytesParser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qs, urlsplit

from radiobox.app.radio_service import RadioService
from radiobox.app.websocket import (
    OPCODE_CLOSE,
    OPCODE_PING,
    OPCODE_PONG,
    OPCODE_TEXT,
    WebSocketError,
    create_close_frame,
    create_upgrade_response,
    encode_event,
    encode_frame,
    is_upgrade_request,
    read_message,
)
from radiobox.errors import (
    ChatError,
    DownloadError,
    PayloadTooLargeError,
    RadioError,
    RelayTimeoutError,
    ValidationError,
)
from radiobox.outputs.live_relay import CONTAINER_ALIASES

logger = logging.getLogger(__name__)

# Allowance for multipart boundaries and part headers on top of the payload limit
MULTIPART_OVERHEAD = 64 * 1024
WS_QUEUE_SIZE = 100
_READ_CHUNK = 64 * 1024


@dataclass(frozen=True)
class UploadedPart:
    """One field of a multipart/form-data body."""
    name: str
    filename: Optional[str]
    content_type: Optional[str]
    data: bytes


def parse_multipart(content_type: str, body: bytes) -> Dict[str, UploadedPart]:
    """
    Parse a multipart/form-data body.

    Args:
        content_type: Request Content-Type header (carries the boundary)
        body: Raw request body

    Returns:
        Mapping of field name to UploadedPart (first occurrence wins)

    Raises:
        ValidationError: If the body is not multipart/form-data
    """
    if not content_type.lower().startswith("multipart/form-data"):
        raise ValidationError("Expected multipart/form-data")
    header = f"Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n".encode("latin-1")
    message = BytesParser(policy=policy.HTTP).parsebytes(header + body)
    if not message.is_multipart():
        raise ValidationError("Malformed multipart body")

    parts: Dict[str, UploadedPart] = {}
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        if not name or name in parts:
            continue
        explicit_type = part.get("Content-Type")
        parts[name] = UploadedPart(
            name=name,
            filename=part.get_filename(),
            content_type=part.get_content_type() if explicit_type else None,
            data=part.get_payload(decode=True) or b"",
        )
    return parts


def is_origin_allowed(origin: str, allowed_origins: Iterable[str], production: bool) -> bool:
    """
    Decide whether a browser origin may call the API.

    Configured origins match ignoring a trailing slash. Outside production,
    any localhost origin is accepted.
    """
    normalized = origin.rstrip("/")
    if normalized in (o.rstrip("/") for o in allowed_origins):
        return True
    if not production:
        host = urlsplit(normalized).hostname or ""
        return host in ("localhost", "127.0.0.1")
    return False


def status_for_error(error: RadioError) -> int:
    """HTTP status for a radio error."""
    if isinstance(error, PayloadTooLargeError):
        return 413
    if isinstance(error, RelayTimeoutError):
        return 504
    if isinstance(error, DownloadError):
        return 502
    if isinstance(error, ValidationError):
        return 400
    return 500


def container_hint_for(content_type: Optional[str], filename: Optional[str] = None) -> str:
    """
    Container name expected for a live clip.

    "audio/webm;codecs=opus" -> "webm", "audio/mpeg" -> "mp3", "audio/x-wav" -> "wav".
    Falls back to the filename extension, then to "webm".
    """
    if content_type:
        main = content_type.split(";", 1)[0].strip().lower()
        if "/" in main:
            subtype = main.split("/", 1)[1]
            if subtype not in ("octet-stream", ""):
                return CONTAINER_ALIASES.get(subtype, subtype)
    if filename and "." in filename:
        extension = filename.rsplit(".", 1)[1].lower()
        return CONTAINER_ALIASES.get(extension, extension)
    return "webm"


def make_radio_handler(service: RadioService):
    """Create a request handler class bound to a RadioService."""

    config = service.config

    class RadioHandler(BaseHTTPRequestHandler):
        """HTTP request handler for radio and chat endpoints."""

        protocol_version = "HTTP/1.1"

        def __init__(self, *args, **kwargs):
            self.service = service
            super().__init__(*args, **kwargs)

        # --------------------------------------------------------------
        # Dispatch
        # --------------------------------------------------------------

        def do_OPTIONS(self):
            """CORS preflight."""
            origin = self.headers.get("Origin")
            if origin and not self._origin_allowed(origin):
                self._send_json(403, {"status": "error", "error": "Not allowed by CORS"})
                return
            self.send_response(204)
            self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
            self.send_header(
                "Access-Control-Allow-Headers",
                self.headers.get("Access-Control-Request-Headers", "Content-Type"),
            )
            self.send_header("Access-Control-Max-Age", "600")
            self.send_header("Content-Length", "0")
            self.end_headers()

        def do_GET(self):
            """Handle GET requests."""
            path = urlsplit(self.path).path.rstrip("/") or "/"
            routes = {
                "/radio/queue": self._handle_queue,
                "/radio/now-playing": self._handle_now_playing,
                "/chat/messages": self._handle_chat_history,
                "/chat/ws": self._handle_chat_ws,
                "/health": self._handle_health,
            }
            self._dispatch(routes.get(path))

        def do_POST(self):
            """Handle POST requests."""
            path = urlsplit(self.path).path.rstrip("/") or "/"
            routes = {
                "/radio/upload": self._handle_upload,
                "/radio/youtube": self._handle_youtube,
                "/radio/clear": self._handle_clear,
                "/radio/stream": self._handle_stream,
                "/chat/messages": self._handle_chat_post,
            }
            self._dispatch(routes.get(path))

        def _dispatch(self, handler) -> None:
            if handler is None:
                self._discard_body()
                self._send_error_response(404, "Not Found")
                return
            try:
                handler()
            except RadioError as e:
                self._send_radio_error(e)
            except (ConnectionError, BrokenPipeError):
                logger.debug(f"[HTTP] Client went away during {self.command} {self.path}")
            except Exception as e:
                logger.error(f"[HTTP] Error handling {self.command} {self.path}: {e}", exc_info=True)
                self._send_error_response(500, "Internal server error")

        # --------------------------------------------------------------
        # Radio endpoints
        # --------------------------------------------------------------

        def _handle_upload(self):
            """POST /radio/upload"""
            body = self._read_body(config.max_upload_bytes + MULTIPART_OVERHEAD)
            parts = parse_multipart(self.headers.get("Content-Type", ""), body)
            upload = parts.get("file")
            if upload is None or not upload.data:
                raise ValidationError("No file uploaded")

            content_type = upload.content_type
            if content_type in (None, "application/octet-stream"):
                content_type = None
            track = self.service.upload(upload.data, upload.filename or "upload", content_type)
            self._send_json(200, {
                "message": "File uploaded successfully",
                "filename": track.filename,
                "track": track.to_dict(),
            })

        def _handle_youtube(self):
            """POST /radio/youtube"""
            data = self._read_json()
            track = self.service.add_from_youtube(data.get("url") if isinstance(data, dict) else None)
            self._send_json(200, {
                "message": "YouTube audio added to queue",
                "track": track.to_dict(),
            })

        def _handle_queue(self):
            """GET /radio/queue"""
            self._send_json(200, self.service.get_queue().to_dict())

        def _handle_now_playing(self):
            """GET /radio/now-playing"""
            current = self.service.get_now_playing()
            self._send_json(200, {"track": current.to_dict() if current else None})

        def _handle_clear(self):
            """POST /radio/clear"""
            self._discard_body()
            removed = self.service.clear_queue()
            self._send_json(200, {"message": "Queue cleared", "removed": removed})

        def _handle_stream(self):
            """POST /radio/stream"""
            body = self._read_body(config.relay_max_bytes + MULTIPART_OVERHEAD)
            content_type = self.headers.get("Content-Type", "")
            query = parse_qs(urlsplit(self.path).query)

            if content_type.lower().startswith("multipart/form-data"):
                parts = parse_multipart(content_type, body)
                clip = parts.get("audio")
                if clip is None or not clip.data:
                    raise ValidationError("No audio file received")
                data = clip.data
                hint = container_hint_for(clip.content_type, clip.filename)
            else:
                if not body:
                    raise ValidationError("No audio file received")
                data = body
                hint = container_hint_for(content_type)

            if query.get("format"):
                # Normalized and validated by the relay
                hint = query["format"][0]

            result = self.service.relay(data, hint)
            response = {"message": "Audio sent to stream"}
            response.update(result.to_dict())
            self._send_json(200, response)

        def _handle_health(self):
            """GET /health"""
            self._send_json(200, self.service.health())

        # --------------------------------------------------------------
        # Chat endpoints
        # --------------------------------------------------------------

        def _handle_chat_history(self):
            """GET /chat/messages"""
            query = parse_qs(urlsplit(self.path).query)
            limit = None
            if query.get("limit"):
                try:
                    limit = int(query["limit"][0])
                except ValueError:
                    raise ValidationError("limit must be an integer")
            messages = self.service.recent_chat_messages(limit)
            self._send_json(200, {"messages": [m.to_dict() for m in messages]})

        def _handle_chat_post(self):
            """POST /chat/messages"""
            data = self._read_json()
            if not isinstance(data, dict):
                raise ChatError("Invalid message payload")
            message = self.service.post_chat_message(data.get("user"), data.get("content"))
            self._send_json(200, {"message": message.to_dict()})

        def _handle_chat_ws(self):
            """GET /chat/ws (WebSocket upgrade)"""
            if not is_upgrade_request(self.headers):
                self._send_error_response(400, "WebSocket upgrade required")
                return
            origin = self.headers.get("Origin")
            if origin and not self._origin_allowed(origin):
                self._send_error_response(403, "Not allowed by CORS")
                return

            self.wfile.write(create_upgrade_response(self.headers["Sec-WebSocket-Key"]))
            self.wfile.flush()
            self.close_connection = True

            client = f"{self.client_address[0]}:{self.client_address[1]}"
            subscription = self.service.broadcaster.subscribe(maxsize=WS_QUEUE_SIZE)
            send_lock = threading.Lock()
            closing = threading.Event()
            logger.info(f"[CHAT] WebSocket client connected: {client}")

            def send(frame: bytes) -> None:
                with send_lock:
                    self.wfile.write(frame)
                    self.wfile.flush()

            def pump() -> None:
                while True:
                    event = subscription.get(timeout=0.5)
                    if event is None:
                        if subscription.closed:
                            break
                        continue
                    try:
                        send(encode_event(*event))
                    except OSError:
                        break
                # Dropped (slow consumer or shutdown) while the client is still reading
                if not closing.is_set():
                    try:
                        send(create_close_frame(1001, "going away"))
                    except OSError:
                        pass
                try:
                    self.connection.shutdown(socket.SHUT_RDWR)
                except OSError:
                    pass

            recent = [m.to_dict() for m in self.service.recent_chat_messages()]
            send(encode_event("recent-messages", recent))

            sender = threading.Thread(target=pump, daemon=True, name=f"ChatWS-{client}")
            sender.start()
            try:
                while True:
                    message = read_message(self.rfile)
                    if message is None:
                        break
                    opcode, payload = message
                    if opcode == OPCODE_CLOSE:
                        closing.set()
                        send(create_close_frame())
                        break
                    if opcode == OPCODE_PING:
                        send(encode_frame(payload, opcode=OPCODE_PONG))
                    elif opcode == OPCODE_TEXT:
                        self._handle_ws_text(payload, send)
            except WebSocketError as e:
                logger.warning(f"[CHAT] WebSocket protocol error from {client}: {e}")
                closing.set()
                try:
                    send(create_close_frame(1009, "message too big"))
                except OSError:
                    pass
            except OSError:
                pass
            finally:
                closing.set()
                self.service.broadcaster.unsubscribe(subscription)
                sender.join(timeout=2.0)
                logger.info(f"[CHAT] WebSocket client disconnected: {client}")

        def _handle_ws_text(self, payload: bytes, send) -> None:
            try:
                data = json.loads(payload.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError):
                send(encode_event("error", {"message": "Invalid JSON"}))
                return
            if isinstance(data, dict) and data.get("event") == "message":
                data = data.get("data")
            if not isinstance(data, dict):
                send(encode_event("error", {"message": "Invalid message payload"}))
                return
            try:
                self.service.post_chat_message(data.get("user"), data.get("content"))
            except ChatError as e:
                send(encode_event("error", {"message": e.reason}))

        # --------------------------------------------------------------
        # Helpers
        # --------------------------------------------------------------

        def _origin_allowed(self, origin: str) -> bool:
            return is_origin_allowed(origin, config.allowed_origins, config.is_production)

        def end_headers(self):
            headers = getattr(self, "headers", None)
            origin = headers.get("Origin") if headers else None
            if origin and self._origin_allowed(origin):
                self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header("Access-Control-Allow-Credentials", "true")
                self.send_header("Vary", "Origin")
            super().end_headers()

        def _content_length(self) -> int:
            try:
                return max(0, int(self.headers.get("Content-Length", 0)))
            except ValueError:
                raise ValidationError("Invalid Content-Length")

        def _discard_body(self) -> None:
            remaining = self._content_length()
            while remaining > 0:
                chunk = self.rfile.read(min(_READ_CHUNK, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)

        def _read_body(self, limit: int) -> bytes:
            length = self._content_length()
            if length > limit:
                self._discard_body()
                raise PayloadTooLargeError(f"Request body too large ({length} bytes)")
            return self.rfile.read(length) if length else b""

        def _read_json(self) -> Any:
            body = self._read_body(MULTIPART_OVERHEAD)
            if not body:
                return {}
            try:
                return json.loads(body.decode("utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise ValidationError(f"Invalid JSON: {e}")

        def _send_json(self, status_code: int, payload: Any) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def _send_radio_error(self, error: RadioError) -> None:
            status = status_for_error(error)
            if status >= 500:
                logger.error(f"[HTTP] {self.command} {self.path} failed: {error.reason}")
            else:
                logger.info(f"[HTTP] {self.command} {self.path} rejected ({status}): {error.reason}")
            self._send_error_response(status, error.reason)

        def _send_error_response(self, status_code: int, error_message: str):
            """Send error response in JSON format."""
            self._send_json(status_code, {"status": "error", "error": error_message})

        def log_message(self, format, *args):
            """Override to use our logger."""
            logger.debug(f"{self.address_string()} - {format % args}")

    return RadioHandler


class RadioHTTPServer:
    """HTTP server for the radio API."""

    def __init__(self, host: str, port: int, service: RadioService):
        """
        Args:
            host: Host to bind to
            port: Port to bind to (0 picks a free port)
            service: RadioService handling the requests
        """
        self.host = host
        self.port = port
        self.service = service
        self.server: Optional[ThreadingHTTPServer] = None
        self.server_thread: Optional[threading.Thread] = None
        self._shutdown = False

    def start(self) -> None:
        """Start HTTP server in a background thread."""
        if self.server is not None:
            raise RuntimeError("Server already started")

        handler_class = make_radio_handler(self.service)
        self.server = ThreadingHTTPServer((self.host, self.port), handler_class)
        self.server.daemon_threads = True
        # Report the real port when bound to 0
        self.port = self.server.server_address[1]

        self.server_thread = threading.Thread(
            target=self._run_server,
            daemon=True,
            name="HTTPServer",
        )
        self.server_thread.start()
        logger.info(f"[HTTP] Server started on {self.host}:{self.port}")

    def _run_server(self):
        try:
            self.server.serve_forever()
        except Exception as e:
            if not self._shutdown:
                logger.error(f"[HTTP] Server error: {e}")

    def stop(self) -> None:
        """Stop HTTP server and drop WebSocket clients."""
        if self.server is None:
            return

        self._shutdown = True
        self.service.broadcaster.close_all()
        self.server.shutdown()
        self.server.server_close()

        if self.server_thread:
            self.server_thread.join(timeout=2.0)

        self.server = None
        self.server_thread = None
        logger.info("[HTTP] Server stopped")
