"""
Track ingest for radiobox.

- TrackIngestor: normalizes uploads and downloads into queued Tracks
- YouTubeDownloader: fetches video audio as mp3 via yt-dlp
"""

from radiobox.ingest.track_ingest import (
    ALLOWED_AUDIO_TYPES,
    TrackIngestor,
    canonical_filename,
    clean_title,
    slugify,
)
from radiobox.ingest.youtube import DownloadedAudio, YouTubeDownloader

__all__ = [
    "ALLOWED_AUDIO_TYPES",
    "DownloadedAudio",
    "TrackIngestor",
    "YouTubeDownloader",
    "canonical_filename",
    "clean_title",
    "slugify",
]
