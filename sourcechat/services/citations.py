import re
from dataclasses import dataclass

from sourcechat.models.schemas import CitationEntry
from sourcechat.services.retrieval import RetrievedChunk

MEDIA_SCHEME = "video"

_LABEL_RE = re.compile(r"\[(\^\d+)\]")

_SOURCE_KIND_LABELS = {
    "youtube": "YouTube video",
    "video": "video",
    "web": "website",
    "website": "website",
    "pdf": "PDF document",
    "file": "document",
}


@dataclass
class CitationInfo:
    label: str  # "^1", "^2", ...
    display: str  # marker the model should put in its answer
    chunk: RetrievedChunk


def format_timestamp(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def source_kind_label(kind: str) -> str:
    return _SOURCE_KIND_LABELS.get(kind, "source")


def build_citations(chunks: list[RetrievedChunk]) -> tuple[list[str], list[CitationInfo]]:
    """Label retrieved chunks and render the context lines for the system prompt."""
    context_lines = []
    infos = []
    for i, chunk in enumerate(chunks):
        label = f"^{i + 1}"

        display = f"[{label}]"
        # video chunks with a start time get a clickable time-coded link
        if chunk.media_id and chunk.start_time is not None:
            display = f"[{label}]({MEDIA_SCHEME}://{chunk.media_id}/{int(chunk.start_time)})"

        line = f'[{label}] From {source_kind_label(chunk.source_kind)} "{chunk.source_title or "Untitled"}"'
        if chunk.start_time is not None:
            line += f" at {format_timestamp(chunk.start_time)}"
        if chunk.score:
            line += f" (Relevance: {chunk.score * 100:.1f}%)"
        line += f": {chunk.text}"

        context_lines.append(line)
        infos.append(CitationInfo(label=label, display=display, chunk=chunk))
    return context_lines, infos


def referenced_labels(text: str) -> list[str]:
    seen = []
    for label in _LABEL_RE.findall(text):
        if label not in seen:
            seen.append(label)
    return seen


def resolve_citation_map(text: str, infos: list[CitationInfo], excerpt_length: int = 500) -> dict[str, CitationEntry]:
    """Map each label cited in ``text`` to the excerpt it points at."""
    by_label = {info.label: info for info in infos}
    citation_map = {}
    for label in referenced_labels(text):
        info = by_label.get(label)
        if info is None:
            continue
        citation_map[label] = CitationEntry(
            source_id=info.chunk.source_id,
            chunk_id=info.chunk.chunk_id,
            text=info.chunk.text[:excerpt_length],
            start_time=info.chunk.start_time,
        )
    return citation_map
