"""
Contract tests for FFmpegTranscoder.

subprocess.Popen is patched with a fake process whose pipes are in-memory.
"""

import io
import subprocess
from unittest.mock import patch

import pytest

from radiobox.outputs.transcoder import STDERR_TAIL_LINES, FFmpegTranscoder


class FakeProcess:
    """Minimal Popen stand-in."""

    def __init__(self, stdout=b"", stderr=b"", returncode=0, hang=False):
        self.stdout = io.BytesIO(stdout)
        self.stderr = io.BytesIO(stderr)
        self._final_returncode = returncode
        self._hang = hang
        self.returncode = None
        self.killed = False

    def wait(self, timeout=None):
        if self._hang and not self.killed:
            raise subprocess.TimeoutExpired(cmd="ffmpeg", timeout=timeout)
        self.returncode = -9 if self.killed else self._final_returncode
        return self.returncode

    def kill(self):
        self.killed = True


PROGRESS = (
    b"out_time_ms=500000\n"
    b"speed=1.0x\n"
    b"progress=continue\n"
    b"out_time_ms=1000000\n"
    b"progress=end\n"
)


class TestRun:
    def test_success_collects_progress(self):
        process = FakeProcess(stdout=PROGRESS)
        blocks = []
        with patch("subprocess.Popen", return_value=process) as popen:
            result = FFmpegTranscoder("/usr/bin/ffmpeg").run(["-i", "in.webm", "out"], timeout=5.0,
                                                             on_progress=blocks.append)

        assert result.ok
        assert result.returncode == 0
        assert result.progress_updates == 2
        assert blocks[0]["out_time_ms"] == "500000"
        assert blocks[1] == {"out_time_ms": "1000000", "progress": "end"}
        cmd = popen.call_args[0][0]
        assert cmd == ["/usr/bin/ffmpeg", "-i", "in.webm", "out"]

    def test_failure_keeps_stderr_tail(self):
        stderr = b"".join(f"line {i}\n".encode() for i in range(STDERR_TAIL_LINES + 10))
        process = FakeProcess(stderr=stderr, returncode=1)
        with patch("subprocess.Popen", return_value=process):
            result = FFmpegTranscoder().run(["x"], timeout=5.0)

        assert not result.ok
        assert result.returncode == 1
        assert len(result.stderr_tail) == STDERR_TAIL_LINES
        assert result.stderr_tail[-1] == f"line {STDERR_TAIL_LINES + 9}"
        assert result.stderr_text().endswith(f"line {STDERR_TAIL_LINES + 9}")

    def test_timeout_kills_process(self):
        process = FakeProcess(hang=True)
        with patch("subprocess.Popen", return_value=process):
            result = FFmpegTranscoder().run(["x"], timeout=0.1)

        assert process.killed
        assert result.timed_out
        assert not result.ok

    def test_progress_callback_errors_are_ignored(self):
        def explode(block):
            raise RuntimeError("bad callback")

        with patch("subprocess.Popen", return_value=FakeProcess(stdout=PROGRESS)):
            result = FFmpegTranscoder().run(["x"], timeout=5.0, on_progress=explode)
        assert result.ok
        assert result.progress_updates == 2

    def test_missing_binary_raises_oserror(self):
        with patch("subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(OSError):
                FFmpegTranscoder("/nonexistent/ffmpeg").run(["x"], timeout=1.0)
