"""YouTube audio fetching using yt-dlp."""

import glob
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import yt_dlp

from radiobox.errors import DownloadError

logger = logging.getLogger(__name__)


class _YtDlpLogger:
    """Routes yt-dlp output into the "yt_dlp" logger."""

    def __init__(self):
        self._log = logging.getLogger("yt_dlp")

    def debug(self, msg: str) -> None:
        self._log.debug(msg)

    def info(self, msg: str) -> None:
        self._log.info(msg)

    def warning(self, msg: str) -> None:
        self._log.warning(msg)

    def error(self, msg: str) -> None:
        self._log.error(msg)


@dataclass(frozen=True)
class DownloadedAudio:
    """
    Result of a successful fetch.

    Attributes:
        title: Video title as reported by YouTube
        path: Local mp3 file in the temp directory (owned by the caller)
        duration_seconds: Duration reported by YouTube (0.0 when unknown)
        video_id: YouTube video id
    """
    title: str
    path: str
    duration_seconds: float
    video_id: str


class YouTubeDownloader:
    """Downloads the audio track of a YouTube video and converts it to mp3."""

    def __init__(self, temp_dir: str, socket_timeout: float = 30.0, audio_quality: str = "192"):
        """
        Args:
            temp_dir: Directory the downloaded file is written to
            socket_timeout: Network timeout handed to yt-dlp
            audio_quality: Target mp3 bitrate in kbps for the extract step
        """
        self.temp_dir = os.path.abspath(temp_dir)
        self.socket_timeout = socket_timeout
        self.audio_quality = audio_quality

    def _build_opts(self, outtmpl: str) -> dict:
        return {
            "format": "bestaudio/best",
            "outtmpl": outtmpl,
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "socket_timeout": self.socket_timeout,
            "logger": _YtDlpLogger(),
            "postprocessors": [{
                "key": "FFmpegExtractAudio",
                "preferredcodec": "mp3",
                "preferredquality": self.audio_quality,
            }],
        }

    def fetch_audio(self, url: str) -> DownloadedAudio:
        """
        Download a video's audio as mp3.

        Args:
            url: YouTube video URL

        Returns:
            DownloadedAudio describing the temp file

        Raises:
            DownloadError: If the video cannot be resolved or downloaded
        """
        os.makedirs(self.temp_dir, exist_ok=True)
        base = os.path.join(self.temp_dir, f"yt-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}")
        opts = self._build_opts(base + ".%(ext)s")

        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                info = ydl.extract_info(url, download=True)
        except yt_dlp.utils.DownloadError as e:
            self._discard(base)
            message = str(e).lower()
            if "unsupported url" in message or "not a valid url" in message:
                raise DownloadError(f"Invalid YouTube URL: {url}")
            if "unavailable" in message or "private" in message:
                raise DownloadError("Video is unavailable or private")
            raise DownloadError(f"Error downloading from YouTube: {e}")
        except Exception as e:
            self._discard(base)
            logger.exception("[YOUTUBE] Unexpected error during download")
            raise DownloadError(f"Error downloading from YouTube: {e}")

        if not info:
            self._discard(base)
            raise DownloadError("Failed to extract video information")

        path = self._find_output(base)
        if path is None:
            raise DownloadError("Download completed but file not found")

        title = info.get("title") or "Unknown"
        try:
            duration = float(info.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0

        logger.info(f"[YOUTUBE] Downloaded: {title} ({info.get('id', '?')}) -> {path}")
        return DownloadedAudio(
            title=title,
            path=path,
            duration_seconds=duration,
            video_id=info.get("id", ""),
        )

    @staticmethod
    def _find_output(base: str) -> Optional[str]:
        mp3 = base + ".mp3"
        if os.path.exists(mp3):
            return mp3
        candidates = sorted(glob.glob(glob.escape(base) + ".*"))
        return candidates[0] if candidates else None

    @staticmethod
    def _discard(base: str) -> None:
        for path in glob.glob(glob.escape(base) + ".*"):
            try:
                os.unlink(path)
            except OSError:
                logger.debug(f"[YOUTUBE] Could not remove partial download {path}")
