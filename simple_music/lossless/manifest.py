"""
DASH-style manifest decoding and track response classification.

Lossless providers answer a track request with one of:
    - a JSON body holding a direct file URL ("OriginalTrackUrl")
    - a JSON body holding a base64 manifest ("data.manifest") that is
      either an MPD document or JSON with a "urls" list
    - a raw MPD document

classify_track_response() turns the body into a tagged union
(DirectUrl | EmbeddedManifest | Unrecognized). decode_manifest() turns an
MPD document into the ordered list of URLs to fetch.

Everything here is pure: no I/O, and decoding the same document twice
yields the same list.

Manifest Decoding:
    1. A <BaseURL> pointing at a complete audio file -> [that URL]
    2. SegmentTemplate initialization/media templates:
         init URL first, then one URL per timeline segment.
         <S t? d r?> expands into 1 + r segments.
         $Number$ starts at startNumber (0 when absent).
         $Time$ is the running presentation time (starting at t).
    3. SegmentTemplate without timeline but with duration/timescale:
         estimated segment count when allowed, ManifestError otherwise
    4. Bare .flac/.m4a URLs anywhere in the text
    5. Nothing usable -> ManifestError
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import urljoin, urlparse

from simple_music.core.exceptions import ManifestError
from simple_music.core.logger import get_logger


logger = get_logger(__name__)


# Segments generated when a template has no SegmentTimeline
ESTIMATED_SEGMENT_COUNT = 200

AUDIO_FILE_EXTENSIONS = (".flac", ".m4a", ".mp4")

_BASE_URL_PATTERN = re.compile(r"<BaseURL>\s*([^<]+?)\s*</BaseURL>")
_INIT_PATTERN = re.compile(r'initialization="([^"]+)"')
_MEDIA_PATTERN = re.compile(r'media="([^"]+)"')
_START_NUMBER_PATTERN = re.compile(r'startNumber="(\d+)"')
_SEGMENT_PATTERN = re.compile(r"<S\s+([^>]*?)/?>")
_SEGMENT_ATTR_PATTERN = re.compile(r'\b([tdr])="(-?\d+)"')
_HOST_PATTERN = re.compile(r'(https?://[^/\s<>"]+)')
_DURATION_ATTR = 'duration="'
_TIMESCALE_ATTR = 'timescale="'
_BARE_AUDIO_URL_PATTERN = re.compile(r'(https?://[^\s<>"]+\.(?:flac|m4a|fLaC)[^\s<>"]*)')


# =============================================================================
# TRACK RESPONSE CLASSIFICATION
# =============================================================================

@dataclass(frozen=True)
class DirectUrl:
    """The provider returned a link to a complete audio file."""
    url: str


@dataclass(frozen=True)
class EmbeddedManifest:
    """The provider returned an MPD document to be decoded."""
    document: str


@dataclass(frozen=True)
class Unrecognized:
    """Nothing usable; `reason` says why."""
    reason: str


TrackResponse = Union[DirectUrl, EmbeddedManifest, Unrecognized]


def looks_like_xml(text: str) -> bool:
    stripped = text.lstrip()
    return (
        stripped.startswith("<?xml")
        or stripped.startswith("<MPD")
        or ("<?xml" in stripped and "<MPD" in stripped)
    )


def classify_track_response(body: str) -> TrackResponse:
    """
    Classify a provider track response body.

    Args:
        body: Raw response text.

    Returns:
        DirectUrl, EmbeddedManifest or Unrecognized.

    Example:
        classify_track_response('{"OriginalTrackUrl": "https://x/a.flac"}')
        -> DirectUrl(url="https://x/a.flac")
    """
    if looks_like_xml(body):
        return EmbeddedManifest(body)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return Unrecognized("Response is neither XML nor JSON")

    if not isinstance(payload, dict):
        return Unrecognized("Unexpected JSON shape")

    direct = payload.get("OriginalTrackUrl")
    if isinstance(direct, str) and direct:
        return DirectUrl(direct)

    data = payload.get("data")
    encoded = data.get("manifest") if isinstance(data, dict) else None
    if not isinstance(encoded, str) or not encoded:
        return Unrecognized("No download URL or manifest in response")

    return _classify_manifest_payload(encoded)


def _classify_manifest_payload(encoded: str) -> TrackResponse:
    try:
        decoded = base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, ValueError):
        return Unrecognized("Manifest is not valid base64")

    if looks_like_xml(decoded):
        return EmbeddedManifest(decoded)

    try:
        manifest: Any = json.loads(decoded)
    except json.JSONDecodeError:
        return Unrecognized("Manifest is neither XML nor JSON")

    urls = manifest.get("urls") if isinstance(manifest, dict) else None
    if isinstance(urls, list) and urls and isinstance(urls[0], str):
        return DirectUrl(urls[0])
    return Unrecognized("Manifest JSON has no urls")


# =============================================================================
# MANIFEST DECODING
# =============================================================================

def _is_direct_file_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(AUDIO_FILE_EXTENSIONS)


def _expand_timeline(document: str) -> list[tuple[int, int]]:
    """
    Expand <S> entries into (number_offset, start_time) pairs.

    Each entry is `d` long and repeats `r` more times. `t`, when present,
    resets the running time. Attributes may appear in any order.
    """
    segments: list[tuple[int, int]] = []
    current_time = 0
    for attr_text in _SEGMENT_PATTERN.findall(document):
        attrs = dict(_SEGMENT_ATTR_PATTERN.findall(attr_text))
        if "d" not in attrs:
            continue
        if "t" in attrs:
            current_time = int(attrs["t"])
        duration = int(attrs["d"])
        repeat = max(int(attrs.get("r", 0)), 0)
        for _ in range(repeat + 1):
            segments.append((len(segments), current_time))
            current_time += duration
    return segments


def _fill_template(template: str, number: int, start_time: int) -> str:
    return template.replace("$Number$", str(number)).replace("$Time$", str(start_time))


def decode_manifest(document: str, estimate_missing_timeline: bool = False) -> list[str]:
    """
    Decode an MPD document into the ordered URLs to download.

    Args:
        document: MPD text.
        estimate_missing_timeline: For a template without SegmentTimeline,
                                   generate ESTIMATED_SEGMENT_COUNT segments
                                   instead of raising.

    Returns:
        Non-empty list of absolute URLs. Either a single complete file, or
        the initialization segment followed by media segments.

    Raises:
        ManifestError: If no URL can be derived.

    Example:
        <SegmentTemplate initialization="init.mp4" media="seg_$Number$.m4s">
          <SegmentTimeline><S d="1000" r="2"/></SegmentTimeline>
        -> [base/init.mp4, base/seg_0.m4s, base/seg_1.m4s, base/seg_2.m4s]
    """
    base_match = _BASE_URL_PATTERN.search(document)
    explicit_base = base_match.group(1) if base_match else None

    if explicit_base and _is_direct_file_url(explicit_base):
        return [explicit_base]

    init_match = _INIT_PATTERN.search(document)
    media_match = _MEDIA_PATTERN.search(document)

    if init_match and media_match:
        base_url = explicit_base
        if base_url is None:
            host_match = _HOST_PATTERN.search(document)
            base_url = host_match.group(1) + "/" if host_match else ""

        init_template = init_match.group(1).replace("&amp;", "&")
        media_template = media_match.group(1).replace("&amp;", "&")

        start_match = _START_NUMBER_PATTERN.search(document)
        start_number = int(start_match.group(1)) if start_match else 0

        segments = _expand_timeline(document)
        if not segments:
            segments = _estimated_segments(document, estimate_missing_timeline)

        urls = [urljoin(base_url, init_template)]
        for offset, start_time in segments:
            segment = _fill_template(media_template, start_number + offset, start_time)
            urls.append(urljoin(base_url, segment))
        return urls

    bare_urls = _BARE_AUDIO_URL_PATTERN.findall(document)
    if bare_urls:
        return list(bare_urls)

    raise ManifestError(
        "No downloadable URL found in manifest",
        details={"length": len(document)}
    )


def _estimated_segments(document: str, allowed: bool) -> list[tuple[int, int]]:
    if _DURATION_ATTR not in document or _TIMESCALE_ATTR not in document:
        raise ManifestError("SegmentTemplate has neither a timeline nor a duration")

    if not allowed:
        raise ManifestError(
            "SegmentTemplate has no SegmentTimeline; enable "
            "lossless.estimate_missing_timeline to guess the segment count"
        )

    logger.warning(
        f"Manifest has no SegmentTimeline, estimating {ESTIMATED_SEGMENT_COUNT} segments"
    )
    return [(i, 0) for i in range(ESTIMATED_SEGMENT_COUNT)]
