"""
FFmpeg process runner for radiobox.

Runs one ffmpeg command to completion with a wall-clock bound. stdout
carries `-progress pipe:1` key=value blocks, stderr is drained into a
bounded tail so a failed run can be reported without unbounded buffering.
"""

import logging
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, str]], None]

STDERR_TAIL_LINES = 50


@dataclass
class TranscodeResult:
    """
    Outcome of a single ffmpeg run.

    Attributes:
        returncode: Process exit code (None if it could not be collected)
        timed_out: True if the run was killed for exceeding its bound
        elapsed_seconds: Wall-clock time of the run
        stderr_tail: Last lines ffmpeg wrote to stderr
        progress_updates: Number of progress blocks received
    """
    returncode: Optional[int]
    timed_out: bool
    elapsed_seconds: float
    stderr_tail: List[str] = field(default_factory=list)
    progress_updates: int = 0

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def stderr_text(self) -> str:
        return "\n".join(self.stderr_tail)


class FFmpegTranscoder:
    """Launches ffmpeg and waits for it under a timeout."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path

    def run(
        self,
        args: List[str],
        timeout: float,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TranscodeResult:
        """
        Run ffmpeg with the given arguments.

        Args:
            args: Arguments after the executable name
            timeout: Seconds before the process is killed
            on_progress: Called with each parsed progress block

        Returns:
            TranscodeResult

        Raises:
            OSError: If ffmpeg cannot be started
        """
        cmd = [self.ffmpeg_path] + list(args)
        logger.debug(f"[FFMPEG] Starting: {' '.join(cmd)}")
        start = time.monotonic()

        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)
        progress_count = [0]

        stdout_thread = threading.Thread(
            target=self._drain_progress,
            args=(proc.stdout, on_progress, progress_count),
            daemon=True,
            name="FFmpegProgress",
        )
        stderr_thread = threading.Thread(
            target=self._drain_stderr,
            args=(proc.stderr, stderr_tail),
            daemon=True,
            name="FFmpegStderr",
        )
        stdout_thread.start()
        stderr_thread.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(f"[FFMPEG] Timed out after {timeout:.1f}s, killing process")
            proc.kill()
            try:
                proc.wait(timeout=5.0)
            except subprocess.TimeoutExpired:
                logger.error("[FFMPEG] Process did not exit after kill")

        stdout_thread.join(timeout=2.0)
        stderr_thread.join(timeout=2.0)

        elapsed = time.monotonic() - start
        result = TranscodeResult(
            returncode=proc.returncode,
            timed_out=timed_out,
            elapsed_seconds=elapsed,
            stderr_tail=list(stderr_tail),
            progress_updates=progress_count[0],
        )
        logger.debug(f"[FFMPEG] Finished rc={result.returncode} timed_out={timed_out} in {elapsed:.2f}s")
        return result

    @staticmethod
    def _drain_progress(stream, on_progress: Optional[ProgressCallback], counter: List[int]) -> None:
        if stream is None:
            return
        block: Dict[str, str] = {}
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").strip()
                if not line or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                block[key] = value
                # "progress" closes each block (continue|end)
                if key == "progress":
                    counter[0] += 1
                    if on_progress is not None:
                        try:
                            on_progress(block)
                        except Exception as e:
                            logger.debug(f"[FFMPEG] Progress callback failed: {e}")
                    block = {}
        except (OSError, ValueError):
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass

    @staticmethod
    def _drain_stderr(stream, tail: deque) -> None:
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    tail.append(line)
                    logger.debug(f"[FFMPEG] {line}")
        except (OSError, ValueError):
            pass
        finally:
            try:
                stream.close()
            except OSError:
                pass
