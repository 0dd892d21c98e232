"""
Contract tests for RadioService wiring.

Every collaborator that would shell out or reach the network is a fake.
"""

import os
import threading

import pytest

from radiobox.broadcast_core.track import TrackStatus
from radiobox.errors import (
    ChatError,
    DownloadError,
    InvalidFormatError,
    MetadataError,
    PayloadTooLargeError,
    StorageError,
    UnsupportedMediaError,
    ValidationError,
)
from radiobox.tests.contracts.conftest import SHORT_GRACE
from radiobox.tests.contracts.test_doubles import wait_until

AUDIO = b"ID3" + b"\x00" * 512


def _files(directory):
    return sorted(os.listdir(directory))


class TestUpload:
    def test_upload_enqueues_and_cleans_temp(self, radio_service):
        track = radio_service.upload(AUDIO, "my_song.mp3", "audio/mpeg")

        assert track.display_title == "My Song"
        assert track.status is TrackStatus.PLAYING
        assert _files(radio_service.file_manager.sound_dir) == [track.filename]
        assert _files(radio_service.file_manager.temp_dir) == []
        assert radio_service.get_now_playing().id == track.id

    def test_empty_upload(self, radio_service):
        with pytest.raises(ValidationError):
            radio_service.upload(b"", "x.mp3", "audio/mpeg")

    def test_oversized_upload(self, radio_service):
        with pytest.raises(PayloadTooLargeError):
            radio_service.upload(b"x" * (radio_service.config.max_upload_bytes + 1), "big.mp3")
        assert _files(radio_service.file_manager.temp_dir) == []

    def test_non_audio_upload_writes_nothing(self, radio_service):
        with pytest.raises(UnsupportedMediaError):
            radio_service.upload(b"hello", "notes.txt", "text/plain")
        assert _files(radio_service.file_manager.sound_dir) == []
        assert _files(radio_service.file_manager.temp_dir) == []

    def test_probe_failure_leaves_no_files(self, radio_service, fake_probe):
        fake_probe.error = "Invalid data found when processing input"
        with pytest.raises(MetadataError):
            radio_service.upload(AUDIO, "broken.mp3", "audio/mpeg")
        assert _files(radio_service.file_manager.sound_dir) == []
        assert _files(radio_service.file_manager.temp_dir) == []
        assert radio_service.get_queue().is_idle

    def test_queue_snapshot(self, radio_service):
        first = radio_service.upload(AUDIO, "a.mp3", "audio/mpeg")
        second = radio_service.upload(AUDIO, "b.mp3", "audio/mpeg")

        snapshot = radio_service.get_queue()
        assert snapshot.current.id == first.id
        assert [t.id for t in snapshot.queued] == [second.id]
        assert snapshot.total == 1


class TestYouTube:
    def test_add_from_youtube(self, radio_service):
        track = radio_service.add_from_youtube("https://www.youtube.com/watch?v=abc123")

        assert track.source == "youtube"
        assert track.display_title == "Fake Video"
        assert radio_service.downloader.urls == ["https://www.youtube.com/watch?v=abc123"]
        assert not os.path.exists(radio_service.downloader.paths[0])
        assert _files(radio_service.file_manager.sound_dir) == [track.filename]

    @pytest.mark.parametrize("url", ["", "   ", None])
    def test_missing_url(self, radio_service, url):
        with pytest.raises(ValidationError, match="URL is required"):
            radio_service.add_from_youtube(url)
        assert radio_service.downloader.urls == []

    def test_download_failure(self, radio_service):
        radio_service.downloader.error = "Video is unavailable or private"
        with pytest.raises(DownloadError):
            radio_service.add_from_youtube("https://www.youtube.com/watch?v=gone")
        assert radio_service.get_queue().is_idle

    def test_probe_failure_removes_download(self, radio_service, fake_probe):
        fake_probe.error = "bad audio"
        with pytest.raises(MetadataError):
            radio_service.add_from_youtube("https://www.youtube.com/watch?v=abc123")
        assert not os.path.exists(radio_service.downloader.paths[0])
        assert _files(radio_service.file_manager.sound_dir) == []


class TestClear:
    def test_clear_queue(self, radio_service):
        radio_service.upload(AUDIO, "a.mp3", "audio/mpeg")
        radio_service.upload(AUDIO, "b.mp3", "audio/mpeg")
        subscription = radio_service.broadcaster.subscribe()

        assert radio_service.clear_queue() == 2
        assert radio_service.get_queue().is_idle
        assert _files(radio_service.file_manager.sound_dir) == []
        assert subscription.get(timeout=1.0) == ("now-playing", {"track": None})

    @pytest.mark.timeout(10)
    def test_clear_while_upload_is_probing(self, radio_service, fake_probe):
        earlier = radio_service.upload(AUDIO, "earlier.mp3", "audio/mpeg")
        fake_probe.gate = threading.Event()
        results = []
        uploader = threading.Thread(
            target=lambda: results.append(radio_service.upload(AUDIO, "late.mp3", "audio/mpeg"))
        )
        uploader.start()
        try:
            assert fake_probe.entered.wait(2.0)
            assert radio_service.clear_queue() == 1
        finally:
            fake_probe.gate.set()
            uploader.join(timeout=5.0)

        track = results[0]
        assert track.id != earlier.id
        current = radio_service.get_now_playing()
        assert current.id == track.id
        assert os.path.exists(current.file_path)
        assert _files(radio_service.file_manager.sound_dir) == [track.filename]
        assert _files(radio_service.file_manager.temp_dir) == []

    def test_clear_between_store_and_enqueue(self, radio_service, monkeypatch):
        file_manager = radio_service.file_manager
        original_store = file_manager.store

        def store_then_clear(source_file, filename):
            stored_path = original_store(source_file, filename)
            radio_service.clear_queue()
            return stored_path

        monkeypatch.setattr(file_manager, "store", store_then_clear)

        with pytest.raises(StorageError):
            radio_service.upload(AUDIO, "late.mp3", "audio/mpeg")

        assert radio_service.get_now_playing() is None
        assert radio_service.get_queue().is_idle
        assert _files(file_manager.sound_dir) == []
        assert _files(file_manager.temp_dir) == []


class TestPlaybackLifecycle:
    @pytest.mark.timeout(10)
    def test_uploaded_file_is_deleted_after_play_and_grace(self, radio_service, fake_probe):
        fake_probe.duration = 0.3
        track = radio_service.upload(AUDIO, "short.mp3", "audio/mpeg")
        path = radio_service.file_manager.canonical_path(track.filename)

        assert radio_service.get_now_playing().id == track.id
        assert os.path.exists(path)

        assert wait_until(lambda: radio_service.get_now_playing() is None, timeout=3.0)
        assert wait_until(lambda: not os.path.exists(path), timeout=SHORT_GRACE + 2.0)
        assert _files(radio_service.file_manager.sound_dir) == []
        assert radio_service.get_queue().is_idle


class TestEvents:
    def test_now_playing_event_on_start(self, radio_service):
        subscription = radio_service.broadcaster.subscribe()
        track = radio_service.upload(AUDIO, "a.mp3", "audio/mpeg")

        event, data = subscription.get(timeout=1.0)
        assert event == "now-playing"
        assert data["track"]["id"] == track.id
        assert data["track"]["status"] == "playing"


class TestRelay:
    def test_relay_uses_broadcast_url(self, radio_service, fake_probe, fake_transcoder):
        fake_probe.container = "matroska,webm"
        result = radio_service.relay(b"\x1aE\xdf\xa3clip", "webm")

        assert result.success
        args, _ = fake_transcoder.calls[0]
        assert args[-1] == radio_service.config.broadcast_url
        assert _files(radio_service.file_manager.temp_dir) == []

    def test_relay_rejects_wrong_container(self, radio_service):
        with pytest.raises(InvalidFormatError):
            radio_service.relay(b"not webm", "webm")

    def test_relay_does_not_touch_queue(self, radio_service, fake_probe):
        track = radio_service.upload(AUDIO, "a.mp3", "audio/mpeg")
        fake_probe.container = "webm"
        radio_service.relay(b"clip", "webm")
        assert radio_service.get_now_playing().id == track.id


class TestChat:
    def test_post_message_is_stored_and_broadcast(self, radio_service):
        subscription = radio_service.broadcaster.subscribe()
        message = radio_service.post_chat_message({"id": "u1", "name": "Alice"}, "hello")

        assert radio_service.recent_chat_messages()[-1] == message
        assert subscription.get(timeout=1.0) == ("message", message.to_dict())

    def test_invalid_message(self, radio_service):
        with pytest.raises(ChatError):
            radio_service.post_chat_message({"name": "Alice"}, "")
        with pytest.raises(ChatError):
            radio_service.post_chat_message(None, "hello")


class TestHealth:
    def test_health(self, radio_service):
        radio_service.upload(AUDIO, "a.mp3", "audio/mpeg")
        health = radio_service.health()
        assert health["status"] == "ok"
        assert health["playing"] is True
        assert health["queued"] == 0
        assert health["errors"] == 0
        assert health["uptime_seconds"] >= 0
