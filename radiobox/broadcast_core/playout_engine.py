"""
Playout Engine for radiobox.

Single-consumer scheduler that plays queued Tracks one at a time, each for
its real duration, and hands finished files to the FileLifecycleManager.

Lifecycle events:
- on_track_started(track)
- on_track_finished(track)

Concurrency model:
- One consumer thread (started by start()) owns the real-time wait.
- A single Condition guards the waiting queue and the current-track
  reference. The duration wait uses Condition.wait_for with a timeout, so
  the lock is released while a track plays and every other operation
  (enqueue, snapshot, clear) stays responsive.
- At most one track is PLAYING at any instant: promotion happens only
  under the lock and only when no track is current.
"""

import logging
import os
import threading
import time
from collections import deque
from typing import List, Optional, Protocol

from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.playout_queue import PlayoutQueue
from radiobox.broadcast_core.track import Track, TrackStatus
from radiobox.errors import ScheduleConsumerError, StorageError
from radiobox.state.queue_state import QueueSnapshot

logger = logging.getLogger(__name__)


class TrackListener(Protocol):
    """
    Protocol for objects that want playback lifecycle events.

    Listeners receive detached copies of the track and are called outside
    the engine lock. Exceptions raised by a listener are logged and ignored.
    """

    def on_track_started(self, track: Track) -> None:
        """Called when a track becomes PLAYING."""
        ...

    def on_track_finished(self, track: Track) -> None:
        """Called when a track becomes FINISHED (normally, by error, or by clear)."""
        ...


class PlayoutEngine:
    """
    Event-driven playback scheduler.

    Tracks are played in submission order. A track with an unknown (zero)
    duration is timed with unknown_duration_sec instead of finishing
    instantly.
    """

    def __init__(
        self,
        file_manager: FileLifecycleManager,
        unknown_duration_sec: float = 180.0,
        clear_stops_current: bool = True,
        listener: Optional[TrackListener] = None,
    ):
        """
        Initialize the playout engine.

        Args:
            file_manager: Owner of the on-disk track files
            unknown_duration_sec: Wait used for tracks whose probed duration is 0
            clear_stops_current: If True, clear() also abruptly finishes the playing track
            listener: Optional TrackListener for lifecycle events
        """
        self._queue = PlayoutQueue()
        self._file_manager = file_manager
        self._listener = listener
        self.unknown_duration_sec = unknown_duration_sec
        self.clear_stops_current = clear_stops_current

        self._cond = threading.Condition(threading.Lock())
        self._current: Optional[Track] = None
        self._is_running = False
        self._stop_requested = False
        self._play_thread: Optional[threading.Thread] = None
        self._playout_stopped_event = threading.Event()

        # Monitoring
        self._played_count = 0
        self._error_count = 0
        self._recently_finished: deque[int] = deque(maxlen=50)

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, track: Track) -> Track:
        """
        Submit a track for playback.

        If nothing is playing and nothing is waiting, the track is promoted to
        PLAYING immediately; otherwise it is appended to the waiting queue.
        Returns without waiting for playback.

        Args:
            track: Track in WAITING state

        Returns:
            The same track (its status reflects the promotion decision)

        Raises:
            ValueError: If the track is not WAITING
            StorageError: If the track's file is gone (removed by a concurrent clear())
        """
        if track.status is not TrackStatus.WAITING:
            raise ValueError(f"Only waiting tracks can be enqueued (track {track.id} is {track.status.value})")

        with self._cond:
            # clear() purges under this lock, so the file cannot vanish between check and promotion
            if not os.path.exists(track.file_path):
                raise StorageError(f"Audio file for track {track.id} was removed before it could be queued")
            if self._current is None and self._queue.empty():
                self._promote_locked(track)
                started = True
                position = 0
            else:
                self._queue.enqueue(track)
                started = False
                position = self._queue.size()
            self._cond.notify_all()

        if started:
            logger.info(f"[PLAYOUT] Starting playback: {track.display_title} ({track.duration_seconds:.1f}s)")
            self._notify("on_track_started", track)
        else:
            logger.info(f"[PLAYOUT] Track added to queue at position {position}: {track.display_title}")
        return track

    # ------------------------------------------------------------------
    # Read side (never blocks on the real-time wait)
    # ------------------------------------------------------------------

    def get_current(self) -> Optional[Track]:
        """
        Get the currently playing track.

        Returns:
            Copy of the PLAYING track, or None if idle
        """
        with self._cond:
            return self._current.copy() if self._current else None

    def get_queue(self) -> List[Track]:
        """
        Get waiting tracks in submission order (current and finished tracks excluded).

        Returns:
            Copies of the waiting tracks
        """
        with self._cond:
            return [track.copy() for track in self._queue.list_waiting()]

    def list_active(self) -> List[Track]:
        """Return the playing track as a list of zero or one element."""
        current = self.get_current()
        return [current] if current else []

    def snapshot(self) -> QueueSnapshot:
        """
        Take a consistent read-only snapshot of current + waiting tracks.

        Returns:
            QueueSnapshot built under a single lock acquisition
        """
        with self._cond:
            current = self._current.copy() if self._current else None
            queued = tuple(track.copy() for track in self._queue.list_waiting())
        return QueueSnapshot(current=current, queued=queued, total=len(queued))

    def is_playing(self) -> bool:
        with self._cond:
            return self._current is not None

    @property
    def played_count(self) -> int:
        return self._played_count

    @property
    def error_count(self) -> int:
        return self._error_count

    def recently_finished(self) -> List[int]:
        """Ids of the most recently finished tracks, oldest first."""
        with self._cond:
            return list(self._recently_finished)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def clear(self) -> int:
        """
        Empty the queue and delete track files immediately.

        With clear_stops_current enabled (the default), the playing track is
        finished on the spot and every file in the sound directory is purged,
        which abruptly truncates live playback. Otherwise only the waiting
        tracks and their files are removed.

        Returns:
            Number of tracks removed (waiting plus the stopped current one)
        """
        with self._cond:
            drained = self._queue.drain()
            for track in drained:
                track.force_finish()

            stopped: Optional[Track] = None
            if self.clear_stops_current and self._current is not None:
                stopped = self._current
                stopped.force_finish()
                self._recently_finished.append(stopped.id)
                self._current = None

            # File deletion happens under the lock so a track enqueued right
            # after clear() cannot have its fresh file purged.
            if self.clear_stops_current:
                self._file_manager.purge_all()
            else:
                for track in drained:
                    self._file_manager.cancel_cleanup(track.file_path)
                    self._file_manager.remove_now(track.file_path)

            self._cond.notify_all()

        removed = len(drained) + (1 if stopped else 0)
        logger.info(f"[PLAYOUT] Queue cleared ({removed} tracks removed, current stopped: {stopped is not None})")

        if stopped is not None:
            self._notify("on_track_finished", stopped)
        return removed

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the consumer thread."""
        if self._is_running:
            logger.warning("Playout engine is already running")
            return

        logger.info("Starting playout engine")
        with self._cond:
            self._stop_requested = False
        self._is_running = True
        self._playout_stopped_event.clear()

        self._play_thread = threading.Thread(target=self._playout_loop, daemon=True, name="PlayoutEngine")
        self._play_thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the consumer thread.

        The playing track is left as is; shutdown does not wait for it to end.
        """
        if not self._is_running:
            return

        logger.info("Stopping playout engine")
        with self._cond:
            self._stop_requested = True
            self._cond.notify_all()

        if self._play_thread and self._play_thread.is_alive():
            self._play_thread.join(timeout=timeout)
            if self._play_thread.is_alive():
                logger.warning(f"Playout thread did not stop within timeout ({timeout}s)")

        self._is_running = False
        self._play_thread = None
        logger.info("Playout engine stopped")

    def wait_for_playout_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._playout_stopped_event.wait(timeout=timeout)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until nothing is playing and nothing is waiting.

        Returns:
            True if the queue went idle within timeout
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._current is None and self._queue.empty(),
                timeout=timeout,
            )

    def _playout_loop(self) -> None:
        """Consumer loop: take the current track, wait its duration, finish it, repeat."""
        logger.info("Playout loop started")
        try:
            while True:
                promoted: Optional[Track] = None
                with self._cond:
                    self._cond.wait_for(
                        lambda: self._stop_requested
                        or self._current is not None
                        or not self._queue.empty()
                    )
                    if self._stop_requested:
                        break
                    if self._current is None:
                        promoted = self._queue.dequeue()
                        try:
                            self._promote_locked(promoted)
                        except ValueError as e:
                            self._error_count += 1
                            logger.error(f"[PLAYOUT] {ScheduleConsumerError(promoted.id, str(e)).reason} - skipping")
                            promoted.force_finish()
                            continue
                    track = self._current

                if promoted is not None:
                    logger.info(f"[PLAYOUT] Starting playback: {promoted.display_title}")
                    self._notify("on_track_started", promoted)

                self._play_track(track)
        finally:
            logger.info("Playout loop stopped")
            self._playout_stopped_event.set()

    def _play_track(self, track: Track) -> None:
        """
        Hold the track for its duration, then finish it.

        Any error is wrapped in ScheduleConsumerError, logged, and the track is
        forced to FINISHED so the queue keeps moving.
        """
        try:
            duration = self._effective_duration(track)
            started = time.monotonic()
            with self._cond:
                interrupted = self._cond.wait_for(
                    lambda: self._stop_requested or self._current is not track,
                    timeout=duration,
                )
            if interrupted:
                # clear() already finished the track, or shutdown was requested
                logger.debug(f"[PLAYOUT] Wait interrupted for track {track.id}")
                return

            logger.debug(f"[PLAYOUT] Track {track.id} held for {time.monotonic() - started:.2f}s")
            self._complete(track, forced=False)
        except Exception as e:
            error = ScheduleConsumerError(track.id, str(e))
            self._error_count += 1
            logger.error(f"[PLAYOUT] {error.reason} - forcing track to finished", exc_info=True)
            self._complete(track, forced=True)

    def _complete(self, track: Track, forced: bool) -> None:
        """Finish the track, promote the next head, schedule cleanup, notify."""
        next_track: Optional[Track] = None
        with self._cond:
            if self._current is not track:
                return
            if forced:
                track.force_finish()
            else:
                track.transition_to(TrackStatus.FINISHED)
            self._current = None
            self._played_count += 1
            self._recently_finished.append(track.id)
            if not self._queue.empty() and not self._stop_requested:
                next_track = self._queue.dequeue()
                self._promote_locked(next_track)
            self._cond.notify_all()

        logger.info(f"[PLAYOUT] Finished: {track.display_title}")
        self._request_cleanup(track)
        self._notify("on_track_finished", track)
        if next_track is not None:
            logger.info(f"[PLAYOUT] Starting playback: {next_track.display_title}")
            self._notify("on_track_started", next_track)

    def _promote_locked(self, track: Track) -> None:
        """Mark a track PLAYING and make it current. Caller holds the lock and has checked no track is current."""
        track.transition_to(TrackStatus.PLAYING)
        self._current = track

    def _effective_duration(self, track: Track) -> float:
        """
        Get the wait time for a track.

        Falls back to unknown_duration_sec when the probed duration is 0.
        """
        if track.duration_seconds and track.duration_seconds > 0:
            return float(track.duration_seconds)
        logger.warning(
            f"[PLAYOUT] Unknown duration for {track.display_title}, holding for {self.unknown_duration_sec}s"
        )
        return self.unknown_duration_sec

    def _request_cleanup(self, track: Track) -> None:
        try:
            self._file_manager.schedule_cleanup(track.file_path)
        except Exception as e:
            logger.error(f"[CLEANUP] Could not schedule deletion of {track.file_path}: {e}", exc_info=True)

    def _notify(self, event: str, track: Track) -> None:
        listener = self._listener
        if listener is None:
            return
        callback = getattr(listener, event, None)
        if callback is None:
            return
        try:
            callback(track.copy())
        except Exception as e:
            logger.error(f"[PLAYOUT] Listener {event} failed for track {track.id}: {e}", exc_info=True)
