"""
Track ingest for radiobox.

Probes an incoming audio source (uploaded file or downloaded YouTube
audio), moves it into a canonical file in the sound directory and
submits the resulting Track to the playout engine.

Guarantees:
- Non-audio or unreadable input is rejected before anything is written to the
  sound directory.
- Exactly one new file in the sound directory per successful ingest, zero on failure.
"""

import logging
import mimetypes
import os
import re
import threading
import time
from typing import Iterable, Optional

from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.media_probe import MediaProbe
from radiobox.broadcast_core.playout_engine import PlayoutEngine
from radiobox.broadcast_core.track import Track
from radiobox.errors import MetadataError, UnsupportedMediaError

logger = logging.getLogger(__name__)

# Explicit content types accepted from uploads
ALLOWED_AUDIO_TYPES = frozenset({
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/wave",
    "audio/ogg",
    "audio/x-m4a",
    "audio/mp4",
    "audio/webm",
})

_NUMERIC_PREFIX = re.compile(r"^\d+-")
# Short alphanumeric suffix only, so "Mr. Brightside" keeps its words
_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_NON_WORD = re.compile(r"\W+")


def clean_title(label: str, from_filename: bool = True) -> str:
    """
    Derive a display title from a filename or video title.

    Strips a leading "<digits>-" prefix, turns underscores into spaces and
    title-cases each word. Filenames also lose their directory and extension;
    video titles (from_filename=False) keep "AC/DC" or "Node.js" intact.

    Example:
        "1699999999999-my_favorite_SONG.mp3" -> "My Favorite Song"
    """
    name = label.strip()
    if from_filename:
        name = os.path.basename(name)
    name = _NUMERIC_PREFIX.sub("", name)
    if from_filename:
        name = _EXTENSION.sub("", name)
    name = name.replace("_", " ")
    words = name.split(" ")
    return " ".join(word[:1].upper() + word[1:].lower() for word in words).strip()


def slugify(title: str) -> str:
    """Lower-case, non-word runs collapsed to underscores ("track" when nothing is left)."""
    return _NON_WORD.sub("_", title.lower()).strip("_") or "track"


def canonical_filename(track_id: int, title: str) -> str:
    return f"{track_id}-{slugify(title)}.mp3"


class TrackIdGenerator:
    """Millisecond timestamps, bumped so ids are strictly increasing within the process."""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            candidate = int(time.time() * 1000)
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return candidate


class TrackIngestor:
    """Turns audio sources into queued Tracks."""

    def __init__(
        self,
        file_manager: FileLifecycleManager,
        probe: MediaProbe,
        engine: PlayoutEngine,
        allowed_types: Iterable[str] = ALLOWED_AUDIO_TYPES,
    ):
        """
        Args:
            file_manager: Owner of the sound directory
            probe: Metadata probe used for duration
            engine: Playout engine that receives the new Track
            allowed_types: Explicit content types accepted as audio
        """
        self._file_manager = file_manager
        self._probe = probe
        self._engine = engine
        self._allowed_types = frozenset(t.lower() for t in allowed_types)
        self._ids = TrackIdGenerator()

    def check_audio_type(self, source_file: str, label: str, content_type: Optional[str] = None) -> str:
        """
        Decide whether the input is audio.

        An explicit content type must be in the allowed set. Without one, the
        type is guessed from the source filename, then from the label.

        Returns:
            The accepted content type

        Raises:
            UnsupportedMediaError: If the input is not audio
        """
        if content_type:
            normalized = content_type.split(";", 1)[0].strip().lower()
            if normalized not in self._allowed_types:
                raise UnsupportedMediaError(f"Only audio files are allowed (got {normalized})")
            return normalized

        for candidate in (source_file, label):
            guessed, _ = mimetypes.guess_type(candidate or "")
            if guessed:
                if guessed.startswith("audio/"):
                    return guessed
                raise UnsupportedMediaError(f"Only audio files are allowed (got {guessed})")
        raise UnsupportedMediaError("Only audio files are allowed (unknown file type)")

    def ingest(
        self,
        source_file: str,
        original_label: str,
        content_type: Optional[str] = None,
        source: str = "upload",
    ) -> Track:
        """
        Ingest an audio file and enqueue it.

        Args:
            source_file: Path of the file to ingest (removed after a successful probe and copy)
            original_label: Original filename or video title, used for the display title
            content_type: Content type declared by the uploader, if any
            source: "upload" or "youtube"

        Returns:
            The enqueued Track (WAITING, or PLAYING if the queue was idle)

        Raises:
            UnsupportedMediaError: Input is not audio (nothing written)
            MetadataError: Probe failed (nothing written, source untouched)
            StorageError: Copy into the sound directory failed (source untouched), or
                the stored file was purged by a concurrent clear before it was queued
        """
        self.check_audio_type(source_file, original_label, content_type)

        try:
            probe_result = self._probe.probe(source_file)
        except MetadataError as e:
            logger.warning(f"[INGEST] Metadata probe failed for {original_label}: {e.reason}")
            raise

        track_id = self._ids.next_id()
        title = clean_title(original_label, from_filename=source != "youtube") or "Untitled"
        filename = canonical_filename(track_id, title)

        stored_path = self._file_manager.store(source_file, filename)

        # Move semantics: the source is consumed once the canonical copy exists
        if os.path.abspath(source_file) != stored_path:
            self._file_manager.remove_now(source_file)

        track = Track(
            id=track_id,
            file_path=stored_path,
            filename=filename,
            display_title=title,
            duration_seconds=probe_result.duration_seconds,
            source=source,
        )

        try:
            self._engine.enqueue(track)
        except Exception:
            self._file_manager.remove_now(stored_path)
            raise

        logger.info(f"[INGEST] {source} track ingested: {title} ({track.duration_seconds:.1f}s) -> {filename}")
        return track
