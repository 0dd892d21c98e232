"""
Outputs for radiobox.

- FFmpegTranscoder: bounded ffmpeg runs with progress and stderr capture
- LiveStreamRelay: pushes recorded clips to the broadcast endpoint
"""

from radiobox.outputs.live_relay import LiveStreamRelay, OutputProfile, RelayResult
from radiobox.outputs.transcoder import FFmpegTranscoder, TranscodeResult

__all__ = [
    "FFmpegTranscoder",
    "LiveStreamRelay",
    "OutputProfile",
    "RelayResult",
    "TranscodeResult",
]
