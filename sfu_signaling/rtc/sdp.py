"""
SDP helpers applied to offers before they reach the media engine.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Set

_TIAS_LINE = re.compile(r"b=TIAS:\d+\r\n")
_RTPMAP_LINE = re.compile(r"^a=rtpmap:\d+ ([^/\s]+)/", re.MULTILINE)


def cleanup_sdp(sdp: str) -> str:
    """
    Drop ``b=TIAS`` bandwidth lines.

    Everything else, line endings included, is preserved verbatim.
    """

    return _TIAS_LINE.sub("", sdp)


def codec_names(sdp: str) -> Set[str]:
    """Return the upper-cased codec names announced by ``a=rtpmap`` lines."""

    return {name.upper() for name in _RTPMAP_LINE.findall(sdp)}


def missing_codecs(sdp: str, required: Iterable[str]) -> List[str]:
    available = codec_names(sdp)
    return [name for name in required if name.upper() not in available]


__all__ = ["cleanup_sdp", "codec_names", "missing_codecs"]
