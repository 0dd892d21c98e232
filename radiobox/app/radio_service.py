"""
Radio service facade.

Wires the file manager, probe, playout engine, ingest, downloader, live
relay and chat together from a RadioConfig, and exposes the operations the
HTTP layer calls. Owns startup and shutdown ordering.
"""

import logging
import os
import time
from typing import Any, Dict, List, Mapping, Optional

from radiobox.broadcast_core.file_lifecycle import FileLifecycleManager
from radiobox.broadcast_core.media_probe import MediaProbe
from radiobox.broadcast_core.playout_engine import PlayoutEngine
from radiobox.broadcast_core.track import Track
from radiobox.chat.chat_broadcaster import ChatBroadcaster
from radiobox.chat.chat_service import ChatMessage, ChatService, ChatUser
from radiobox.config import RadioConfig
from radiobox.errors import PayloadTooLargeError, ValidationError
from radiobox.ingest.track_ingest import TrackIngestor
from radiobox.ingest.youtube import YouTubeDownloader
from radiobox.outputs.live_relay import LiveStreamRelay, OutputProfile, RelayResult
from radiobox.outputs.transcoder import FFmpegTranscoder
from radiobox.state.queue_state import QueueSnapshot

logger = logging.getLogger(__name__)


class RadioService:
    """Single entry point for every radio operation."""

    def __init__(
        self,
        config: RadioConfig,
        probe: Optional[MediaProbe] = None,
        transcoder: Optional[FFmpegTranscoder] = None,
        downloader: Optional[YouTubeDownloader] = None,
    ):
        """
        Build all components from configuration.

        Args:
            config: Validated RadioConfig
            probe: Metadata probe (default: ffprobe with config timeout)
            transcoder: ffmpeg runner (default: FFmpegTranscoder())
            downloader: YouTube downloader (default: yt-dlp into the temp dir)
        """
        self.config = config
        self.file_manager = FileLifecycleManager(
            sound_dir=config.sound_dir,
            temp_dir=config.temp_dir,
            grace_period_sec=config.grace_period_sec,
        )
        self.probe = probe or MediaProbe(timeout_sec=config.probe_timeout_sec)
        self.engine = PlayoutEngine(
            file_manager=self.file_manager,
            unknown_duration_sec=config.unknown_duration_sec,
            clear_stops_current=config.clear_stops_current,
            listener=self,
        )
        self.ingestor = TrackIngestor(self.file_manager, self.probe, self.engine)
        self.downloader = downloader or YouTubeDownloader(
            temp_dir=config.temp_dir,
            socket_timeout=config.download_timeout_sec,
        )
        self.relay_path = LiveStreamRelay(
            file_manager=self.file_manager,
            probe=self.probe,
            transcoder=transcoder or FFmpegTranscoder(),
            broadcast_url=config.broadcast_url,
            max_bytes=config.relay_max_bytes,
            timeout_sec=config.relay_timeout_sec,
            timeout_margin_sec=config.relay_timeout_margin_sec,
            profile=OutputProfile(
                codec=config.output_codec,
                bitrate=config.output_bitrate,
                channels=config.output_channels,
                sample_rate=config.output_sample_rate,
                container=config.output_format,
            ),
        )
        self.chat = ChatService(capacity=config.chat_capacity)
        self.broadcaster = ChatBroadcaster()
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Prepare directories and start the playout thread.

        Raises:
            StorageError: If the sound or temp directory cannot be created
        """
        self.file_manager.init()
        self.engine.start()
        self._started_at = time.time()
        logger.info(f"[RADIO] Service started (sound_dir={self.file_manager.sound_dir})")

    def stop(self) -> None:
        logger.info("[RADIO] Service stopping")
        self.engine.stop()
        self.file_manager.teardown()
        self.broadcaster.close_all()
        logger.info("[RADIO] Service stopped")

    # ------------------------------------------------------------------
    # Track listener (called by the playout thread)
    # ------------------------------------------------------------------

    def on_track_started(self, track: Track) -> None:
        logger.info(f"[RADIO] Now playing: {track.display_title}")
        self.broadcaster.publish("now-playing", {"track": track.to_dict()})

    def on_track_finished(self, track: Track) -> None:
        logger.debug(f"[RADIO] Finished: {track.display_title}")
        if self.engine.get_current() is None:
            self.broadcaster.publish("now-playing", {"track": None})

    # ------------------------------------------------------------------
    # Queue operations
    # ------------------------------------------------------------------

    def upload(self, data: bytes, filename: str, content_type: Optional[str] = None) -> Track:
        """
        Ingest an uploaded file held in memory.

        The type and size are checked before anything touches disk.

        Raises:
            ValidationError: Empty upload
            PayloadTooLargeError: Upload exceeds max_upload_bytes
            UnsupportedMediaError, StorageError, MetadataError: From ingest
        """
        if not data:
            raise ValidationError("No file uploaded")
        if len(data) > self.config.max_upload_bytes:
            raise PayloadTooLargeError(
                f"File too large ({len(data)} bytes, limit {self.config.max_upload_bytes})"
            )
        self.ingestor.check_audio_type(filename, filename, content_type)

        extension = os.path.splitext(filename)[1] or ".bin"
        temp_path = self.file_manager.write_temp(data, extension, prefix="upload")
        return self.ingest_upload(temp_path, filename, content_type)

    def ingest_upload(
        self,
        source_path: str,
        original_name: str,
        content_type: Optional[str] = None,
    ) -> Track:
        """
        Ingest an uploaded file already written to the temp directory.

        Raises:
            PayloadTooLargeError: File exceeds max_upload_bytes
            UnsupportedMediaError, StorageError, MetadataError: From ingest
        """
        try:
            size = os.path.getsize(source_path)
            if size > self.config.max_upload_bytes:
                raise PayloadTooLargeError(
                    f"File too large ({size} bytes, limit {self.config.max_upload_bytes})"
                )
            return self.ingestor.ingest(source_path, original_name, content_type, source="upload")
        finally:
            # Ingest consumes the source on success; anything left is a failed upload
            self.file_manager.remove_now(source_path)

    def add_from_youtube(self, url: str) -> Track:
        """
        Download a video's audio and ingest it.

        Raises:
            ValidationError: Missing URL
            DownloadError: Download failed
            StorageError, MetadataError: From ingest
        """
        url = (url or "").strip() if isinstance(url, str) else ""
        if not url:
            raise ValidationError("URL is required")

        downloaded = self.downloader.fetch_audio(url)
        try:
            return self.ingestor.ingest(
                downloaded.path,
                downloaded.title,
                content_type="audio/mpeg",
                source="youtube",
            )
        finally:
            self.file_manager.remove_now(downloaded.path)

    def get_queue(self) -> QueueSnapshot:
        return self.engine.snapshot()

    def get_now_playing(self) -> Optional[Track]:
        return self.engine.get_current()

    def clear_queue(self) -> int:
        """Remove every track and file. Returns the number of tracks removed."""
        removed = self.engine.clear()
        logger.info(f"[RADIO] Queue cleared ({removed} tracks removed)")
        self.broadcaster.publish("now-playing", {"track": None})
        return removed

    # ------------------------------------------------------------------
    # Live relay
    # ------------------------------------------------------------------

    def relay(self, audio: bytes, container_hint: str = "webm") -> RelayResult:
        return self.relay_path.relay(audio, container_hint)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def post_chat_message(self, user: Optional[Mapping[str, Any]], content: str) -> ChatMessage:
        """
        Validate, store and broadcast a chat message.

        Raises:
            ChatError: Invalid user or content
        """
        message = self.chat.save_message(ChatUser.from_dict(user), content)
        self.broadcaster.publish("message", message.to_dict())
        return message

    def recent_chat_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        return self.chat.get_recent_messages(limit)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        snapshot = self.engine.snapshot()
        uptime = time.time() - self._started_at if self._started_at else 0.0
        return {
            "status": "ok",
            "uptime_seconds": round(uptime, 1),
            "playing": snapshot.current is not None,
            "queued": snapshot.total,
            "played": self.engine.played_count,
            "errors": self.engine.error_count,
            "pendingDeletions": len(self.file_manager.pending_cleanups()),
            "chatClients": self.broadcaster.subscriber_count(),
        }
