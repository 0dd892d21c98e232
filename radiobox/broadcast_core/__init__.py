"""
Playback core for radiobox.

This package provides the scheduling and file-ownership components:
- PlayoutEngine: single-consumer scheduler that plays tracks in order
- PlayoutQueue: FIFO of waiting tracks
- FileLifecycleManager: owner of the sound and temp directories
- MediaProbe: ffprobe-backed metadata probe
"""

from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.media_probe import MediaProbe, ProbeResult
from radiobox.broadcast_core.playout_engine import PlayoutEngine, TrackListener
from radiobox.broadcast_core.playout_queue import PlayoutQueue
from radiobox.broadcast_core.track import Track, TrackStatus

__all__ = [
    "FileLifecycleManager",
    "MediaProbe",
    "ProbeResult",
    "PlayoutEngine",
    "PlayoutQueue",
    "Track",
    "TrackListener",
    "TrackStatus",
]
