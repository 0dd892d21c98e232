"""
Shared pytest fixtures for radiobox contract tests.

Durations and grace periods are shortened so timing-based tests run in
seconds. All files live under pytest's tmp_path.
"""

import socket
import threading

import pytest

from radiobox.app.http_server import RadioHTTPServer
from radiobox.app.radio_service import RadioService
from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.playout_engine import PlayoutEngine
from radiobox.config import RadioConfig
from radiobox.tests.contracts.test_doubles import (
    FakeDownloader,
    FakeMediaProbe,
    FakeTranscoder,
    RecordingListener,
)

SHORT_GRACE = 0.2
SHORT_UNKNOWN_DURATION = 0.5


def find_free_port() -> int:
    """Find a free TCP port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def dirs(tmp_path):
    """(sound_dir, temp_dir) under tmp_path."""
    sound_dir = tmp_path / "sound"
    temp_dir = tmp_path / "temp"
    return str(sound_dir), str(temp_dir)


@pytest.fixture
def file_manager(dirs):
    sound_dir, temp_dir = dirs
    manager = FileLifecycleManager(sound_dir, temp_dir, grace_period_sec=SHORT_GRACE)
    manager.init()
    yield manager
    manager.teardown()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def engine(file_manager, listener):
    """Started PlayoutEngine with a recording listener."""
    playout = PlayoutEngine(
        file_manager=file_manager,
        unknown_duration_sec=SHORT_UNKNOWN_DURATION,
        listener=listener,
    )
    playout.start()
    yield playout
    playout.stop()


@pytest.fixture
def fake_probe():
    return FakeMediaProbe(duration=30.0, container="mp3")


@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()


@pytest.fixture
def radio_config(dirs):
    sound_dir, temp_dir = dirs
    return RadioConfig(
        host="127.0.0.1",
        port=0,
        sound_dir=sound_dir,
        temp_dir=temp_dir,
        grace_period_sec=SHORT_GRACE,
        unknown_duration_sec=SHORT_UNKNOWN_DURATION,
        max_upload_bytes=1024 * 1024,
        relay_max_bytes=64 * 1024,
        relay_timeout_sec=5.0,
        relay_timeout_margin_sec=1.0,
    )


@pytest.fixture
def radio_service(radio_config, fake_probe, fake_transcoder):
    """Started RadioService wired to fakes for ffprobe, ffmpeg and yt-dlp."""
    service = RadioService(
        radio_config,
        probe=fake_probe,
        transcoder=fake_transcoder,
        downloader=FakeDownloader(radio_config.temp_dir),
    )
    service.start()
    yield service
    service.stop()


@pytest.fixture
def http_server(radio_service):
    """Running RadioHTTPServer on an ephemeral port. Yields the base URL."""
    server = RadioHTTPServer("127.0.0.1", 0, radio_service)
    server.start()
    yield f"http://127.0.0.1:{server.port}"
    server.stop()


@pytest.fixture(autouse=False)
def thread_leak_guard():
    """Fail the test if it leaves non-daemon threads behind."""
    before = set(t.ident for t in threading.enumerate())
    yield
    leaked = [
        t for t in threading.enumerate()
        if t.ident not in before and t.is_alive() and not t.daemon
    ]
    thread_info = "\n".join(f"  - {t.name}" for t in leaked)
    assert not leaked, f"Thread leak detected:\n{thread_info}"
