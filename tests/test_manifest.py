"""Tests for manifest decoding and track response classification"""

import base64
import json

import pytest

from simple_music.core.exceptions import ManifestError
from simple_music.lossless.manifest import (
    ESTIMATED_SEGMENT_COUNT,
    DirectUrl,
    EmbeddedManifest,
    Unrecognized,
    classify_track_response,
    decode_manifest,
)


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


TEMPLATE_MPD = """<?xml version="1.0"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011">
  <Period><AdaptationSet><Representation id="FLAC">
    <SegmentTemplate timescale="44100" initialization="https://sp.example/a/init.mp4" media="https://sp.example/a/seg_$Number$.m4s"{start}>
      <SegmentTimeline>{timeline}</SegmentTimeline>
    </SegmentTemplate>
  </Representation></AdaptationSet></Period>
</MPD>"""


def template_mpd(timeline: str, start: str = "") -> str:
    return TEMPLATE_MPD.format(timeline=timeline, start=start)


class TestDecodeManifest:
    """MPD -> ordered URL list"""

    def test_repeat_expands_to_one_plus_r_segments(self):
        """<S d r=2> yields three media segments after the init segment"""
        urls = decode_manifest(template_mpd('<S d="1000" r="2"/>'))

        assert urls == [
            "https://sp.example/a/init.mp4",
            "https://sp.example/a/seg_0.m4s",
            "https://sp.example/a/seg_1.m4s",
            "https://sp.example/a/seg_2.m4s",
        ]

    def test_start_number(self):
        urls = decode_manifest(template_mpd('<S d="1000" r="1"/>', start=' startNumber="1"'))
        assert urls[1:] == ["https://sp.example/a/seg_1.m4s", "https://sp.example/a/seg_2.m4s"]

    def test_time_placeholder_tracks_presentation_time(self):
        document = template_mpd('<S t="100" d="50" r="1"/><S d="25"/>').replace("$Number$", "$Time$")

        urls = decode_manifest(document)

        assert urls[1:] == [
            "https://sp.example/a/seg_100.m4s",
            "https://sp.example/a/seg_150.m4s",
            "https://sp.example/a/seg_200.m4s",
        ]

    def test_segment_attributes_in_any_order(self):
        document = template_mpd('<S r="2" d="1000" t="0"/><S d="500" t="3000"/>').replace("$Number$", "$Time$")

        urls = decode_manifest(document)

        assert urls[1:] == [
            "https://sp.example/a/seg_0.m4s",
            "https://sp.example/a/seg_1000.m4s",
            "https://sp.example/a/seg_2000.m4s",
            "https://sp.example/a/seg_3000.m4s",
        ]

    def test_relative_templates_resolved_against_base_url(self):
        document = """<MPD><BaseURL>https://cdn.example/track/</BaseURL>
        <SegmentTemplate initialization="init.mp4" media="$Number$.m4s">
        <SegmentTimeline><S d="10"/></SegmentTimeline></SegmentTemplate></MPD>"""

        assert decode_manifest(document) == [
            "https://cdn.example/track/init.mp4",
            "https://cdn.example/track/0.m4s",
        ]

    def test_base_url_to_complete_file(self):
        document = "<MPD><BaseURL>https://cdn.example/full.flac?token=1</BaseURL></MPD>"
        assert decode_manifest(document) == ["https://cdn.example/full.flac?token=1"]

    def test_escaped_ampersands_in_templates(self):
        document = template_mpd('<S d="10"/>').replace(
            "seg_$Number$.m4s", "seg_$Number$.m4s?a=1&amp;b=2"
        )
        assert decode_manifest(document)[1] == "https://sp.example/a/seg_0.m4s?a=1&b=2"

    def test_bare_audio_urls(self):
        document = "<MPD><Foo>https://cdn.example/one.flac</Foo></MPD>"
        assert decode_manifest(document) == ["https://cdn.example/one.flac"]

    def test_missing_timeline_is_an_error_by_default(self):
        document = """<MPD><SegmentTemplate timescale="44100" duration="176400"
        initialization="https://sp.example/init.mp4" media="https://sp.example/$Number$.m4s"/></MPD>"""

        with pytest.raises(ManifestError):
            decode_manifest(document)

    def test_missing_timeline_estimated_when_allowed(self):
        document = """<MPD><SegmentTemplate timescale="44100" duration="176400"
        initialization="https://sp.example/init.mp4" media="https://sp.example/$Number$.m4s"/></MPD>"""

        urls = decode_manifest(document, estimate_missing_timeline=True)

        assert len(urls) == ESTIMATED_SEGMENT_COUNT + 1
        assert urls[0] == "https://sp.example/init.mp4"

    def test_nothing_usable(self):
        with pytest.raises(ManifestError):
            decode_manifest("<MPD><Period/></MPD>")

    def test_decoding_is_idempotent(self):
        document = template_mpd('<S d="1000" r="4"/>')
        assert decode_manifest(document) == decode_manifest(document)


class TestClassifyTrackResponse:
    """Provider body -> DirectUrl | EmbeddedManifest | Unrecognized"""

    def test_original_track_url(self):
        body = json.dumps({"OriginalTrackUrl": "https://cdn.example/a.flac"})
        assert classify_track_response(body) == DirectUrl("https://cdn.example/a.flac")

    def test_raw_xml(self):
        document = template_mpd('<S d="1"/>')
        assert classify_track_response(document) == EmbeddedManifest(document)

    def test_base64_mpd_manifest(self):
        document = template_mpd('<S d="1"/>')
        body = json.dumps({"data": {"manifest": b64(document)}})

        assert classify_track_response(body) == EmbeddedManifest(document)

    def test_base64_json_manifest_with_urls(self):
        manifest = json.dumps({"mimeType": "audio/flac", "urls": ["https://cdn.example/b.flac"]})
        body = json.dumps({"data": {"manifest": b64(manifest)}})

        assert classify_track_response(body) == DirectUrl("https://cdn.example/b.flac")

    @pytest.mark.parametrize("body", [
        "not json at all",
        json.dumps([1, 2, 3]),
        json.dumps({"data": {}}),
        json.dumps({"data": {"manifest": "abcde"}}),
        json.dumps({"data": {"manifest": b64("plain text")}}),
        json.dumps({"data": {"manifest": b64(json.dumps({"urls": []}))}}),
    ])
    def test_unrecognized(self, body):
        assert isinstance(classify_track_response(body), Unrecognized)
