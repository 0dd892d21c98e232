"""
Playout Queue for radiobox.

FIFO of Tracks waiting for playback, in submission order.
Not thread-safe on its own: PlayoutEngine guards it with its lock.
"""

import logging
from collections import deque
from typing import List, Optional

from radiobox.broadcast_core.track import Track

logger = logging.getLogger(__name__)


class PlayoutQueue:
    """
    FIFO queue of waiting Tracks.

    Order is submission order; there is no reordering or priority.
    """

    def __init__(self):
        """Initialize the playout queue."""
        self._queue: deque[Track] = deque()

    def enqueue(self, track: Track) -> None:
        """
        Add a Track to the end of the queue.

        Args:
            track: Track to add
        """
        self._queue.append(track)
        logger.debug(f"Enqueued: id={track.id}, title={track.display_title}, path={track.file_path}")

    def dequeue(self) -> Optional[Track]:
        """
        Remove and return the first Track from the queue.

        Returns:
            Track from front of queue, or None if queue is empty
        """
        if self.empty():
            return None

        track = self._queue.popleft()
        logger.debug(f"Dequeued: id={track.id}, title={track.display_title}")
        return track

    def list_waiting(self) -> List[Track]:
        """
        Get all waiting Tracks in queue order (without removing them).

        Returns:
            List of Tracks, head first
        """
        return list(self._queue)

    def drain(self) -> List[Track]:
        """
        Remove and return every Track in the queue.

        Returns:
            The removed Tracks in queue order
        """
        drained = list(self._queue)
        self._queue.clear()
        logger.debug(f"Queue drained ({len(drained)} tracks)")
        return drained

    def empty(self) -> bool:
        return len(self._queue) == 0

    def size(self) -> int:
        return len(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

