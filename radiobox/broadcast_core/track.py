"""
Track model for radiobox.

A Track is the unit of playback: one ingested audio file with its
derived title, probed duration and lifecycle status.
"""

import enum
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


class TrackStatus(enum.Enum):
    """Track lifecycle states. FINISHED is terminal."""
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


# Allowed forward transitions
_TRANSITIONS = {
    TrackStatus.WAITING: TrackStatus.PLAYING,
    TrackStatus.PLAYING: TrackStatus.FINISHED,
}


@dataclass
class Track:
    """
    Represents a single queued audio item.

    Attributes:
        id: Unique, strictly increasing id (ingest timestamp in milliseconds)
        file_path: Absolute path to the canonical audio file
        filename: Canonical file basename
        display_title: Human-readable title derived from the original label
        duration_seconds: Probed duration; 0.0 means unknown
        status: Lifecycle status
        submitted_at: Wall-clock submission time
        started_at: Wall-clock time the track became PLAYING
        finished_at: Wall-clock time the track became FINISHED
        source: Where the track came from ("upload" or "youtube")
    """
    id: int
    file_path: str
    filename: str
    display_title: str
    duration_seconds: float = 0.0
    status: TrackStatus = TrackStatus.WAITING
    submitted_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    source: str = "upload"

    def transition_to(self, new_status: TrackStatus) -> None:
        """
        Move the track forward in its lifecycle.

        Raises:
            ValueError: If the transition skips a state or goes backwards
        """
        if _TRANSITIONS.get(self.status) is not new_status:
            raise ValueError(
                f"Illegal track transition {self.status.value} -> {new_status.value} (track {self.id})"
            )
        self.status = new_status
        if new_status is TrackStatus.PLAYING:
            self.started_at = time.time()
        elif new_status is TrackStatus.FINISHED:
            self.finished_at = time.time()

    def force_finish(self) -> None:
        """Mark the track FINISHED from any non-terminal state (error and clear paths)."""
        if self.status is TrackStatus.FINISHED:
            return
        self.status = TrackStatus.FINISHED
        self.finished_at = time.time()

    @property
    def is_finished(self) -> bool:
        return self.status is TrackStatus.FINISHED

    def copy(self) -> "Track":
        """Return a detached copy (used for read-only snapshots)."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filepath": self.file_path,
            "filename": self.filename,
            "metadata": {
                "title": self.display_title,
                "duration": self.duration_seconds,
            },
            "status": self.status.value,
            "addedAt": self.submitted_at,
            "startedAt": self.started_at,
            "source": self.source,
        }
