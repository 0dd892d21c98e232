"""
Media metadata probe backed by ffprobe.

Given a file path, returns the container format and duration in one
ffprobe call. Every failure (missing binary, non-zero exit, unparseable
output, timeout) surfaces as a MetadataError so ingest can clean up.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from radiobox.errors import MetadataError, ProbeTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """What the probe learned about a file."""
    duration_seconds: float
    container_format: str
    title: Optional[str] = None

    @property
    def container_names(self) -> List[str]:
        """ffprobe reports aliases as a comma list, e.g. "matroska,webm"."""
        return [name.strip() for name in self.container_format.split(",") if name.strip()]

    def matches_container(self, hint: str) -> bool:
        return hint.strip().lower() in (name.lower() for name in self.container_names)


class MediaProbe:
    """Thin wrapper around ffprobe with a bounded wait."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_sec: float = 10.0):
        """
        Args:
            ffprobe_path: ffprobe executable (default: "ffprobe" from PATH)
            timeout_sec: Maximum time to wait for ffprobe
        """
        self.ffprobe_path = ffprobe_path
        self.timeout_sec = timeout_sec

    def _build_cmd(self, file_path: str) -> List[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration,format_name:format_tags=title",
            "-of", "json",
            file_path,
        ]

    def probe(self, file_path: str) -> ProbeResult:
        """
        Probe a media file.

        Args:
            file_path: Path to the file to inspect

        Returns:
            ProbeResult with duration (0.0 when ffprobe reports none) and container format

        Raises:
            ProbeTimeoutError: If ffprobe does not finish within timeout_sec
            MetadataError: If ffprobe is missing, fails, or prints unusable output
        """
        try:
            result = subprocess.run(
                self._build_cmd(file_path),
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"[PROBE] ffprobe timed out after {self.timeout_sec}s: {file_path}")
            raise ProbeTimeoutError(f"Metadata probe timed out after {self.timeout_sec}s")
        except OSError as e:
            logger.error(f"[PROBE] Could not run ffprobe: {e}")
            raise MetadataError(f"Metadata probe unavailable: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.warning(f"[PROBE] ffprobe failed ({result.returncode}) for {file_path}: {stderr}")
            raise MetadataError(f"Failed to read audio metadata: {stderr or 'ffprobe exited with ' + str(result.returncode)}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise MetadataError(f"Unreadable metadata output: {e}")

        format_info = data.get("format") or {}
        container_format = format_info.get("format_name") or ""
        if not container_format:
            raise MetadataError("Failed to read audio metadata: no container detected")

        duration = 0.0
        duration_str = format_info.get("duration")
        if duration_str not in (None, "", "N/A"):
            try:
                duration = max(0.0, float(duration_str))
            except (TypeError, ValueError):
                logger.debug(f"[PROBE] Unparseable duration {duration_str!r} for {file_path}")

        tags = format_info.get("tags") or {}
        title = tags.get("title") or tags.get("TITLE")

        logger.debug(f"[PROBE] {file_path}: format={container_format}, duration={duration:.2f}s")
        return ProbeResult(duration_seconds=duration, container_format=container_format, title=title)
