"""
Live stream relay for radiobox.

Takes a short recorded clip (a browser MediaRecorder webm blob, typically),
validates it, and pushes it to the broadcast endpoint through ffmpeg with
real-time pacing. Independent of the playback queue.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import List, Optional

from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.media_probe import MediaProbe
from radiobox.errors import (
    InvalidFormatError,
    MetadataError,
    PayloadTooLargeError,
    RelayError,
    RelayTimeoutError,
    StorageError,
)
from radiobox.outputs.transcoder import FFmpegTranscoder

logger = logging.getLogger(__name__)

# MIME subtypes and file extensions -> ffmpeg demuxer names (as ffprobe reports them)
CONTAINER_ALIASES = {
    "mpeg": "mp3",
    "mpga": "mp3",
    "mpeg3": "mp3",
    "x-mp3": "mp3",
    "x-wav": "wav",
    "wave": "wav",
    "vnd.wave": "wav",
    "x-m4a": "m4a",
    "x-matroska": "matroska",
    "mka": "matroska",
    "weba": "webm",
    "oga": "ogg",
    "opus": "ogg",
    "x-flac": "flac",
    "x-aac": "aac",
}

_CONTAINER_NAME = re.compile(r"[a-z0-9]+")


def normalize_container(name: Optional[str]) -> str:
    """
    Map a MIME subtype or extension to the demuxer name passed to "ffmpeg -f".

    Raises:
        InvalidFormatError: If the name is not a plain lower-case token
    """
    key = (name or "").strip().lower()
    container = CONTAINER_ALIASES.get(key, key)
    if not _CONTAINER_NAME.fullmatch(container):
        raise InvalidFormatError(f"Unsupported container format: {name!r}")
    return container


@dataclass(frozen=True)
class OutputProfile:
    """Encoding parameters for the broadcast endpoint."""
    codec: str = "libmp3lame"
    bitrate: str = "128k"
    channels: int = 2
    sample_rate: int = 44100
    container: str = "mp3"
    content_type: str = "audio/mpeg"


@dataclass(frozen=True)
class RelayResult:
    """
    Outcome of a relay.

    Attributes:
        success: True when the encoder exited cleanly
        bytes_in: Size of the clip received
        duration_seconds: Probed clip duration (0.0 when unknown)
        elapsed_seconds: Wall-clock time spent encoding and sending
    """
    success: bool
    bytes_in: int
    duration_seconds: float
    elapsed_seconds: float

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "bytesIn": self.bytes_in,
            "duration": self.duration_seconds,
            "elapsed": round(self.elapsed_seconds, 3),
        }


class LiveStreamRelay:
    """Relays recorded clips to the broadcast endpoint."""

    def __init__(
        self,
        file_manager: FileLifecycleManager,
        probe: MediaProbe,
        transcoder: FFmpegTranscoder,
        broadcast_url: str,
        max_bytes: int = 5 * 1024 * 1024,
        timeout_sec: float = 120.0,
        timeout_margin_sec: float = 15.0,
        profile: Optional[OutputProfile] = None,
    ):
        """
        Args:
            file_manager: Owner of the temp directory
            probe: Used to verify the clip container
            transcoder: Runs ffmpeg
            broadcast_url: Destination (credentials embedded)
            max_bytes: Largest accepted clip
            timeout_sec: Encoder bound when the clip duration is unknown
            timeout_margin_sec: Added to the probed duration to bound the encoder
            profile: Output encoding parameters
        """
        self._file_manager = file_manager
        self._probe = probe
        self._transcoder = transcoder
        self._broadcast_url = broadcast_url
        self.max_bytes = max_bytes
        self.timeout_sec = timeout_sec
        self.timeout_margin_sec = timeout_margin_sec
        self.profile = profile or OutputProfile()

    def build_command(self, input_path: str, input_format: str) -> List[str]:
        """ffmpeg arguments (without the executable) for one relay."""
        p = self.profile
        return [
            "-hide_banner",
            "-loglevel", "error",
            "-re",
            "-f", input_format,
            "-i", input_path,
            "-vn",
            "-acodec", p.codec,
            "-b:a", p.bitrate,
            "-ac", str(p.channels),
            "-ar", str(p.sample_rate),
            "-content_type", p.content_type,
            "-f", p.container,
            "-progress", "pipe:1",
            "-nostats",
            self._broadcast_url,
        ]

    def relay(self, audio_buffer: bytes, container_hint: str = "webm") -> RelayResult:
        """
        Validate a clip and push it to the broadcast endpoint.

        Args:
            audio_buffer: Raw clip bytes
            container_hint: Expected container, MIME subtype or extension (normalized,
                then matched against ffprobe format_name)

        Returns:
            RelayResult

        Raises:
            InvalidFormatError: Empty clip, unknown container name, probe failure or container mismatch
            PayloadTooLargeError: Clip larger than max_bytes
            RelayTimeoutError: Encoder exceeded its bound
            RelayError: Encoder failed (reason carries its stderr tail)
        """
        size = len(audio_buffer or b"")
        if size == 0:
            raise InvalidFormatError("No audio received")
        if size > self.max_bytes:
            raise PayloadTooLargeError(f"Audio clip too large ({size} bytes, limit {self.max_bytes})")

        hint = normalize_container(container_hint or "webm")
        try:
            temp_path = self._file_manager.write_temp(audio_buffer, hint, prefix="live")
        except StorageError as e:
            raise RelayError(e.reason)

        try:
            try:
                probe_result = self._probe.probe(temp_path)
            except MetadataError as e:
                raise InvalidFormatError(f"Could not read audio clip: {e.reason}")

            if not probe_result.matches_container(hint):
                raise InvalidFormatError(
                    f"Invalid audio format: expected {hint}, got {probe_result.container_format}"
                )

            duration = probe_result.duration_seconds
            if duration > 0:
                timeout = duration + self.timeout_margin_sec
            else:
                timeout = self.timeout_sec

            logger.info(f"[RELAY] Relaying {size} bytes ({duration:.1f}s {hint}) with {timeout:.1f}s bound")
            try:
                result = self._transcoder.run(self.build_command(temp_path, hint), timeout=timeout)
            except OSError as e:
                raise RelayError(f"Could not start encoder: {e}")

            if result.timed_out:
                raise RelayTimeoutError(f"Encoder did not finish within {timeout:.1f}s")
            if not result.ok:
                tail = result.stderr_text() or f"exit code {result.returncode}"
                logger.error(f"[RELAY] Encoder failed: {tail}")
                raise RelayError(tail)

            logger.info(f"[RELAY] Clip relayed in {result.elapsed_seconds:.2f}s")
            return RelayResult(
                success=True,
                bytes_in=size,
                duration_seconds=duration,
                elapsed_seconds=result.elapsed_seconds,
            )
        finally:
            self._file_manager.remove_now(temp_path)
