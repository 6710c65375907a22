"""Splitting assistant text into plain text, citations and media references.

Markers understood in assistant output:

* ``[^n](video://<id>/<seconds>)``: labelled media reference
* ``video://<id>/<seconds>``: bare media reference; punctuation right
  after the seconds stays plain text
* ``[^n]``: citation whose details live in the message's citation map

Parsing is lossless: joining the ``text`` of every segment gives back the
input string.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

MEDIA_SCHEME = "video"

_MARKER_RE = re.compile(
    r"\[(?P<link_label>\^\d+)\]\((?P<link>video://[^)\s]*)\)"
    r"|(?P<bare>video://[^\s)\]/]+/\d+(?![\w/])|video://[^\s)\]]*)"
    r"|\[(?P<label>\^\d+)\]"
)
_MEDIA_RE = re.compile(r"^video://([^/\s]+)/(\d+)$")

TEXT = "text"
CITATION = "citation"
MEDIA_REF = "media_ref"
INVALID = "invalid"


@dataclass(frozen=True)
class MediaRef:
    media_id: str
    timestamp: int
    label: Optional[str] = None

    @property
    def formatted(self) -> str:
        return format_timestamp(self.timestamp)

    @property
    def url(self) -> str:
        return youtube_url(self.media_id, self.timestamp)


@dataclass(frozen=True)
class Segment:
    kind: str
    text: str
    payload: Any = None


def format_timestamp(seconds: int) -> str:
    """``M:SS`` below an hour, ``H:MM:SS`` from one hour on."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def youtube_url(media_id: str, seconds: int) -> str:
    query = urlencode({"v": media_id, "t": f"{max(0, int(seconds))}s"})
    return f"https://www.youtube.com/watch?{query}"


def parse_media_ref(link: str, label: Optional[str] = None) -> Optional[MediaRef]:
    match = _MEDIA_RE.match(link)
    if not match:
        return None
    return MediaRef(media_id=match.group(1), timestamp=int(match.group(2)), label=label)


def _marker_segment(match: re.Match) -> Segment:
    raw = match.group(0)
    if match.group("label"):
        return Segment(CITATION, raw, match.group("label"))

    link = match.group("link") or match.group("bare")
    ref = parse_media_ref(link, label=match.group("link_label"))
    if ref is None:
        return Segment(INVALID, raw, link)
    return Segment(MEDIA_REF, raw, ref)


def parse_references(text: str) -> list[Segment]:
    segments: list[Segment] = []
    pos = 0
    for match in _MARKER_RE.finditer(text):
        if match.start() > pos:
            segments.append(Segment(TEXT, text[pos:match.start()], text[pos:match.start()]))
        segments.append(_marker_segment(match))
        pos = match.end()
    if pos < len(text):
        segments.append(Segment(TEXT, text[pos:], text[pos:]))
    return segments


def render_plain(segments: list[Segment], citation_map: Optional[dict] = None) -> str:
    """Display text for terminals and logs.

    Citations become ``[n]`` and media references ``[▶ M:SS]``. A citation
    label missing from ``citation_map`` is kept verbatim.
    """
    parts = []
    for segment in segments:
        if segment.kind == CITATION:
            if citation_map is not None and segment.payload not in citation_map:
                parts.append(segment.text)
            else:
                parts.append(f"[{segment.payload.lstrip('^')}]")
        elif segment.kind == MEDIA_REF:
            parts.append(f"[▶ {segment.payload.formatted}]")
        else:
            parts.append(segment.text)
    return "".join(parts)
