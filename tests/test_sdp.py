"""Tests for the SDP clean-up helpers."""

import pytest

from sfu_signaling.rtc.sdp import cleanup_sdp, codec_names, missing_codecs


@pytest.mark.parametrize(
    "sdp, expected",
    [
        ("c=IN IP4 0.0.0.0\r\nb=TIAS:500000\r\nb=AS:500\r\n", "c=IN IP4 0.0.0.0\r\nb=AS:500\r\n"),
        ("c=IN IP4 0.0.0.0\r\nb=TIAS:10\r\nb=AS:500\r\n", "c=IN IP4 0.0.0.0\r\nb=AS:500\r\n"),
        ("b=TIAS:1\r\nb=TIAS:2\r\na=mid:0\r\n", "a=mid:0\r\n"),
    ],
)
def test_cleanup_sdp_strips_tias_lines(sdp: str, expected: str) -> None:
    assert cleanup_sdp(sdp) == expected


def test_cleanup_sdp_preserves_other_lines() -> None:
    sdp = "v=0\r\nb=AS:500\r\nb=TIAS:abc\r\na=rtpmap:96 VP8/90000\r\n"
    assert cleanup_sdp(sdp) == sdp
    assert cleanup_sdp("") == ""


def test_codec_names_are_upper_cased() -> None:
    sdp = "a=rtpmap:111 opus/48000/2\r\na=rtpmap:96 VP8/90000\r\na=rtpmap:97 rtx/90000\r\n"
    assert codec_names(sdp) == {"OPUS", "VP8", "RTX"}


def test_missing_codecs_keeps_requested_spelling() -> None:
    sdp = "a=rtpmap:111 opus/48000/2\r\na=rtpmap:96 VP8/90000\r\n"
    assert missing_codecs(sdp, ["VP8", "opus"]) == []
    assert missing_codecs(sdp, ["H264", "opus"]) == ["H264"]
