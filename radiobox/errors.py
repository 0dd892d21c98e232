"""
Error taxonomy for radiobox.

Every error raised by the core derives from RadioError and carries a
human-readable reason. The HTTP layer maps ValidationError subclasses to
client errors and everything else to server errors.
"""


class RadioError(Exception):
    """Base exception for radio operations."""

    def __init__(self, reason: str = ""):
        self.reason = reason or self.__class__.__name__
        super().__init__(self.reason)


class ValidationError(RadioError):
    """Raised when caller input is rejected before any work is done."""

    pass


class UnsupportedMediaError(ValidationError):
    """Raised when an upload is not a recognized audio type."""

    pass


class PayloadTooLargeError(ValidationError):
    """Raised when an upload or live clip exceeds its size limit."""

    pass


class IngestError(RadioError):
    """Base exception for track ingest failures."""

    pass


class StorageError(IngestError):
    """Raised when a file cannot be copied into (or a directory created for) the sound store."""

    pass


class MetadataError(IngestError):
    """Raised when the metadata probe fails or returns unusable output."""

    pass


class ProbeTimeoutError(MetadataError):
    """Raised when the metadata probe does not answer in time."""

    pass


class DownloadError(RadioError):
    """Raised when the external downloader cannot fetch audio."""

    pass


class RelayError(RadioError):
    """Base exception for live relay failures."""

    pass


class InvalidFormatError(RelayError, ValidationError):
    """Raised when a live clip is empty or not in the expected container."""

    pass


class RelayTimeoutError(RelayError):
    """Raised when the encoder does not finish within its bound."""

    pass


class ScheduleConsumerError(RadioError):
    """Wraps an unexpected error raised while the consumer transitions a track."""

    def __init__(self, track_id: int, reason: str):
        self.track_id = track_id
        super().__init__(f"track {track_id}: {reason}")


class FileCleanupError(RadioError):
    """Raised (and logged, never propagated) when a deferred deletion fails."""

    pass


class ChatError(ValidationError):
    """Raised when a chat message fails validation."""

    pass
