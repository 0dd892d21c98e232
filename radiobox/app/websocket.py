"""
WebSocket protocol helpers for the chat endpoint.

Implements the RFC 6455 upgrade handshake and frame encoding/decoding
needed by /chat/ws. Frames are read from a blocking binary stream (the
request handler's rfile), so no partial-buffer bookkeeping is needed.
"""

import base64
import hashlib
import json
import logging
import os
import struct
from typing import Any, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# WebSocket magic string per RFC 6455
WEBSOCKET_MAGIC_STRING = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

OPCODE_CONTINUATION = 0x0
OPCODE_TEXT = 0x1
OPCODE_BINARY = 0x2
OPCODE_CLOSE = 0x8
OPCODE_PING = 0x9
OPCODE_PONG = 0xA

# Largest client frame accepted (chat messages are small)
MAX_FRAME_PAYLOAD = 64 * 1024


class WebSocketError(Exception):
    """WebSocket protocol error."""
    pass


def generate_accept_key(sec_websocket_key: str) -> str:
    """
    Generate the Sec-WebSocket-Accept value.

    Per RFC 6455 Section 1.3: SHA-1(key + magic_string), then base64 encode.
    """
    key = sec_websocket_key + WEBSOCKET_MAGIC_STRING
    sha1 = hashlib.sha1(key.encode("utf-8")).digest()
    return base64.b64encode(sha1).decode("utf-8")


def is_upgrade_request(headers: Mapping[str, str]) -> bool:
    """Check that request headers describe a version 13 WebSocket upgrade."""
    if headers.get("Upgrade", "").lower() != "websocket":
        return False
    # Connection may be a list, e.g. "keep-alive, Upgrade"
    connection = [token.strip().lower() for token in headers.get("Connection", "").split(",")]
    if "upgrade" not in connection:
        return False
    if not headers.get("Sec-WebSocket-Key"):
        return False
    return headers.get("Sec-WebSocket-Version", "") == "13"


def create_upgrade_response(sec_websocket_key: str) -> bytes:
    """HTTP 101 response bytes for a WebSocket upgrade."""
    accept_key = generate_accept_key(sec_websocket_key)
    response = (
        "HTTP/1.1 101 Switching Protocols\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Accept: {accept_key}\r\n"
        "\r\n"
    )
    return response.encode("ascii")


def encode_frame(payload: bytes, opcode: int = OPCODE_TEXT, mask: bool = False) -> bytes:
    """
    Encode a single final WebSocket frame.

    Server-to-client frames are unmasked; mask=True produces a client-style
    frame with a random masking key.

    Args:
        payload: Frame payload bytes
        opcode: Frame opcode
        mask: Whether to mask the payload

    Returns:
        Encoded frame bytes
    """
    payload_len = len(payload)
    first_byte = 0x80 | (opcode & 0x0F)  # FIN = 1, RSV = 0
    mask_bit = 0x80 if mask else 0

    if payload_len < 126:
        header = struct.pack("!BB", first_byte, mask_bit | payload_len)
    elif payload_len < 65536:
        header = struct.pack("!BBH", first_byte, mask_bit | 126, payload_len)
    else:
        header = struct.pack("!BBQ", first_byte, mask_bit | 127, payload_len)

    if not mask:
        return header + payload

    mask_key = os.urandom(4)
    masked = bytes(b ^ mask_key[i % 4] for i, b in enumerate(payload))
    return header + mask_key + masked


def _read_exact(stream, n: int) -> Optional[bytes]:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            return None
        data += chunk
    return data


def read_frame(stream) -> Optional[Tuple[int, bool, bytes]]:
    """
    Read one frame from a blocking binary stream.

    Returns:
        (opcode, fin, payload), or None on EOF

    Raises:
        WebSocketError: If the frame is larger than MAX_FRAME_PAYLOAD
    """
    header = _read_exact(stream, 2)
    if header is None:
        return None

    first_byte, second_byte = header[0], header[1]
    fin = bool(first_byte & 0x80)
    opcode = first_byte & 0x0F
    masked = bool(second_byte & 0x80)
    payload_len = second_byte & 0x7F

    if payload_len == 126:
        extended = _read_exact(stream, 2)
        if extended is None:
            return None
        payload_len = struct.unpack("!H", extended)[0]
    elif payload_len == 127:
        extended = _read_exact(stream, 8)
        if extended is None:
            return None
        payload_len = struct.unpack("!Q", extended)[0]

    if payload_len > MAX_FRAME_PAYLOAD:
        raise WebSocketError(f"Frame too large ({payload_len} bytes)")

    mask_key = None
    if masked:
        mask_key = _read_exact(stream, 4)
        if mask_key is None:
            return None

    payload = _read_exact(stream, payload_len) if payload_len else b""
    if payload is None:
        return None
    if mask_key:
        payload = bytes(b ^ mask_key[i % 4] for i, b in enumerate(payload))
    return opcode, fin, payload


def read_message(stream) -> Optional[Tuple[int, bytes]]:
    """
    Read one complete message, joining continuation frames.

    Control frames are returned as soon as they arrive.

    Returns:
        (opcode, payload), or None on EOF
    """
    message_opcode: Optional[int] = None
    parts = []
    while True:
        frame = read_frame(stream)
        if frame is None:
            return None
        opcode, fin, payload = frame
        if opcode >= OPCODE_CLOSE:
            return opcode, payload
        if opcode != OPCODE_CONTINUATION:
            message_opcode = opcode
            parts = []
        parts.append(payload)
        if sum(len(p) for p in parts) > MAX_FRAME_PAYLOAD:
            raise WebSocketError("Message too large")
        if fin and message_opcode is not None:
            return message_opcode, b"".join(parts)


def create_close_frame(code: int = 1000, reason: str = "") -> bytes:
    """Close frame bytes (1000 = normal closure)."""
    payload = struct.pack("!H", code) + reason.encode("utf-8")
    return encode_frame(payload, opcode=OPCODE_CLOSE)


def encode_event(event: str, data: Any) -> bytes:
    """Text frame carrying {"event": ..., "data": ...}."""
    body = json.dumps({"event": event, "data": data}).encode("utf-8")
    return encode_frame(body, opcode=OPCODE_TEXT)
