"""Recovery of JSON payloads from model output.

Providers are asked for JSON but answer in something close to natural
language: code fences, a sentence of preamble, trailing commas, Python
literals, truncated brackets. ``parse_structured`` peels those layers off in
order and never raises. Repair defaults to ``json_repair.repair_json``; any
``str -> str`` function can be passed instead.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar

from json_repair import repair_json
from sourcechat.errors import MissingField, RecoveryFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

RepairStrategy = Callable[[str], str]

_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n?(.*?)\s*```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class ParsedResult(Generic[T]):
    success: bool
    raw_text: str
    data: Optional[T] = None
    error: Optional[str] = None

    def unwrap(self) -> T:
        """Return the parsed data or raise ``RecoveryFailure``."""
        if not self.success:
            raise RecoveryFailure(self.error or "Could not parse structured response")
        return self.data


# --- Parsing ---

def _narrow(text: str) -> str:
    cleaned = text.strip()

    if cleaned.startswith("```"):
        fence = _FENCE_RE.match(cleaned)
        if fence:
            cleaned = fence.group(1).strip()
        else:
            # unterminated fence, typically a truncated response
            cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""

    obj = _OBJECT_RE.search(cleaned)
    if obj:
        return obj.group(0)
    if "{" in cleaned:
        return cleaned[cleaned.index("{"):]
    return cleaned


def parse_structured(
    raw_text: str,
    fallback: Optional[T] = None,
    repair: RepairStrategy = repair_json,
) -> ParsedResult[T]:
    """Extract and parse the JSON payload embedded in a model response."""
    try:
        candidate = _narrow(raw_text or "")
        try:
            return ParsedResult(success=True, data=json.loads(candidate), raw_text=raw_text)
        except json.JSONDecodeError as parse_error:
            logger.info("Attempting to repair JSON: %s", parse_error)

        data = json.loads(repair(candidate))
        if not isinstance(data, (dict, list)):
            # bare prose repairs into a lone string, which is not a recovery
            raise ValueError("Repaired response is not a JSON object or array")
        logger.info("Repaired and parsed JSON response")
        return ParsedResult(success=True, data=data, raw_text=raw_text)

    except Exception as e:
        error = str(e) or type(e).__name__
        logger.warning("Failed to parse structured response: %s", error)
        logger.debug("Raw response: %s", (raw_text or "")[:2000])
        if fallback is not None:
            logger.info("Using fallback data for structured response")
        return ParsedResult(success=False, data=fallback, error=error, raw_text=raw_text)


# --- Field sanitizing ---

_MISSING = object()


@dataclass
class FieldConstraint:
    required: bool = False
    max_length: Optional[int] = None
    default: Any = _MISSING
    transform: Optional[Callable[[Any], Any]] = None

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


def sanitize_fields(data: Any, constraints: Mapping[str, FieldConstraint]) -> dict:
    """Build a record containing exactly the constrained fields.

    Absent or null values take the field default; a required field with no
    default raises ``MissingField``. ``transform`` runs before truncation.
    """
    source = data if isinstance(data, Mapping) else {}
    result = {}
    for field, constraint in constraints.items():
        value = source.get(field)
        if value is None:
            if constraint.required and not constraint.has_default:
                raise MissingField(field)
            result[field] = constraint.default if constraint.has_default else None
            continue

        if constraint.transform:
            value = constraint.transform(value)
        if isinstance(value, str) and constraint.max_length:
            value = value[:constraint.max_length]
        result[field] = value
    return result
