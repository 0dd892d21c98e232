"""
File lifecycle management for track and temp files.

FileLifecycleManager owns the sound directory (canonical track files) and
the temp directory (uploads, downloads, live clips). No other component
creates or deletes files directly.
"""

import logging
import os
import shutil
import threading
import time
import uuid
from typing import Dict, List

from radiobox.errors import FileCleanupError, StorageError

logger = logging.getLogger(__name__)


class FileLifecycleManager:
    """Manages the on-disk lifetime of track files."""

    def __init__(self, sound_dir: str, temp_dir: str, grace_period_sec: float = 2.0):
        """
        Initialize the file manager.

        Args:
            sound_dir: Directory holding canonical track files
            temp_dir: Directory for uploads, downloads and live clips
            grace_period_sec: Delay between a track finishing and its file being deleted
        """
        self.sound_dir = os.path.abspath(sound_dir)
        self.temp_dir = os.path.abspath(temp_dir)
        self.grace_period_sec = grace_period_sec
        # path -> pending deletion timer
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def init(self) -> None:
        """
        Create both directories and wipe leftovers from a previous run.

        Raises:
            StorageError: If a directory cannot be created (fatal at startup)
        """
        for directory in (self.sound_dir, self.temp_dir):
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create directory {directory}: {e}")
        removed = self._delete_all_files()
        logger.info(f"[FILES] Sound directory ready: {self.sound_dir} ({removed} stale files removed)")

    def teardown(self) -> None:
        """Cancel every pending deletion."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info(f"[FILES] Teardown complete ({len(timers)} pending deletions cancelled)")

    def canonical_path(self, filename: str) -> str:
        return os.path.join(self.sound_dir, os.path.basename(filename))

    def store(self, source_path: str, filename: str) -> str:
        """
        Copy a file into the sound directory.

        On failure the source is left untouched and no partial copy remains.

        Args:
            source_path: File to copy
            filename: Canonical basename for the copy

        Returns:
            Absolute path of the stored file

        Raises:
            StorageError: If the copy fails
        """
        dest = self.canonical_path(filename)
        try:
            shutil.copyfile(source_path, dest)
        except OSError as e:
            self.remove_now(dest)
            logger.error(f"[FILES] Copy failed {source_path} -> {dest}: {e}")
            raise StorageError(f"Failed to store audio file: {e}")
        logger.debug(f"[FILES] Stored {source_path} -> {dest}")
        return dest

    def remove_now(self, path: str) -> bool:
        """
        Delete a file immediately (best effort).

        Returns:
            True if a file was deleted, False if it was already gone or deletion failed
        """
        try:
            os.unlink(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"[FILES] Could not delete {path}: {e}")
            return False

    def schedule_cleanup(self, path: str) -> None:
        """
        Delete a file after the grace period.

        Fire-and-forget: returns immediately. Scheduling a path that already
        has a pending deletion replaces the earlier timer.

        Args:
            path: File to delete
        """
        timer = threading.Timer(self.grace_period_sec, self._run_cleanup, args=(path,))
        timer.daemon = True
        timer.name = f"cleanup-{os.path.basename(path)}"
        with self._lock:
            previous = self._timers.pop(path, None)
            self._timers[path] = timer
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.debug(f"[CLEANUP] Scheduled deletion in {self.grace_period_sec}s: {path}")

    def cancel_cleanup(self, path: str) -> bool:
        """Cancel a pending deletion. Returns True if one was pending."""
        with self._lock:
            timer = self._timers.pop(path, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending_cleanups(self) -> List[str]:
        with self._lock:
            return list(self._timers)

    def _run_cleanup(self, path: str) -> None:
        """Timer callback. Errors are logged and swallowed."""
        with self._lock:
            # Cancelled or superseded while the timer was firing
            if self._timers.get(path) is not threading.current_thread():
                return
            del self._timers[path]
        try:
            os.unlink(path)
            logger.info(f"[CLEANUP] File removed: {path}")
        except FileNotFoundError:
            logger.debug(f"[CLEANUP] Already gone: {path}")
        except OSError as e:
            error = FileCleanupError(f"Failed to delete {path}: {e}")
            logger.error(f"[CLEANUP] {error.reason}")

    def purge_all(self) -> int:
        """
        Cancel pending deletions and synchronously delete every file in the sound directory.

        Returns:
            Number of files deleted
        """
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        removed = self._delete_all_files()
        logger.info(f"[FILES] Purged sound directory ({removed} files, {len(timers)} pending deletions cancelled)")
        return removed

    def _delete_all_files(self) -> int:
        removed = 0
        try:
            entries = os.listdir(self.sound_dir)
        except OSError as e:
            logger.error(f"[FILES] Error reading directory {self.sound_dir}: {e}")
            return 0
        for name in entries:
            path = os.path.join(self.sound_dir, name)
            if os.path.isfile(path) and self.remove_now(path):
                removed += 1
        return removed

    def list_sound_files(self) -> List[str]:
        try:
            return sorted(
                name for name in os.listdir(self.sound_dir)
                if os.path.isfile(os.path.join(self.sound_dir, name))
            )
        except OSError:
            return []

    def make_temp_path(self, extension: str, prefix: str = "temp") -> str:
        """Build a unique path in the temp directory (the file is not created)."""
        extension = extension.lstrip(".") or "bin"
        name = f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{extension}"
        return os.path.join(self.temp_dir, name)

    def write_temp(self, data: bytes, extension: str, prefix: str = "temp") -> str:
        """
        Persist a buffer to a new temp file.

        Raises:
            StorageError: If the write fails or produces an empty file
        """
        os.makedirs(self.temp_dir, exist_ok=True)
        path = self.make_temp_path(extension, prefix)
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as e:
            self.remove_now(path)
            raise StorageError(f"Failed to save temporary file: {e}")
        if os.path.getsize(path) == 0:
            self.remove_now(path)
            raise StorageError("Failed to save temporary file: file is empty")
        return path
