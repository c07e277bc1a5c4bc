"""
Lossless (FLAC) acquisition.

Components:
    - RateLimiter: rolling-window call budget per provider
    - manifest: Tidal response classification and DASH manifest decoding
    - LosslessEngine: song.link resolution and the provider cascade
"""

from simple_music.lossless.engine import LosslessEngine
from simple_music.lossless.manifest import (
    DirectUrl,
    EmbeddedManifest,
    TrackResponse,
    Unrecognized,
    classify_track_response,
    decode_manifest,
)
from simple_music.lossless.models import AcquisitionResult, DeezerTrack, StreamingLinks
from simple_music.lossless.rate_limiter import RateLimiter

__all__ = [
    "LosslessEngine",
    "RateLimiter",
    "AcquisitionResult",
    "DeezerTrack",
    "StreamingLinks",
    "DirectUrl",
    "EmbeddedManifest",
    "Unrecognized",
    "TrackResponse",
    "classify_track_response",
    "decode_manifest",
]
