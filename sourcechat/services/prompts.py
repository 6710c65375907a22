from sourcechat.services.citations import CitationInfo

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, accurate, and concise AI assistant. "
    "No source material was found for this question, so answer from general "
    "knowledge and say so when the user seems to expect an answer from their sources."
)

SOURCES_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions using the provided context from various sources including websites, documents, videos, and other materials.

Context from relevant sources:
{context}

Citation markers:
{markers}

Instructions:
- Answer the user's question based on the provided context from the sources above
- When referencing information, cite the source with its marker exactly as listed, e.g. "The research shows that..." [^1]
- Video markers are clickable links that open the video at the quoted moment; copy them verbatim
- If the context doesn't contain sufficient information to answer the question, acknowledge this limitation
- Be concise but informative in your responses
- When referencing multiple sources, distinguish between them clearly"""

SUGGESTIONS_SYSTEM_PROMPT = (
    "You suggest follow-up questions for a chat grounded in the user's sources. "
    "Given the recent conversation, produce exactly {n} short, diverse questions "
    "the user might ask next, each under {max_length} characters. "
    'Return ONLY a JSON object of the form {{"questions": ["...", "..."]}}, '
    "no markdown, no explanation."
)


def build_system_prompt(context_lines: list[str], citations: list[CitationInfo]) -> str:
    if not context_lines:
        return DEFAULT_SYSTEM_PROMPT
    markers = "\n".join(f"- {info.label}: {info.display}" for info in citations)
    return SOURCES_SYSTEM_PROMPT.format(context="\n\n".join(context_lines), markers=markers)
