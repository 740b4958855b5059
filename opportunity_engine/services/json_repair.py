"""
Tolerant decoder for AI suggestion output.

Model output is supposed to be a bare JSON array but regularly arrives wrapped
in markdown fences, surrounded by prose, or cut off mid-object when the token
limit is hit. Each step of the ladder is tried in order and the first one that
parses wins:

    1. strict       json.loads on the raw text
    2. unfenced     strip ``` / ```json fences, then json.loads
    3. extracted    greedy match from the first "[" to the last "]"
    4. repaired     from the first "[", truncate after the last "}" and close "]"

If nothing parses, GeneratorParseError carries a preview of the raw text.
Items that fail schema validation are skipped; a response with no valid items
is also a GeneratorParseError.
"""

import json
import re
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError

from opportunity_engine.core.errors import GeneratorParseError
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.schemas import OpportunitySuggestion

logger = get_logger(__name__)

PREVIEW_CHARS = 500

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def _strict(text: str) -> str:
    return text


def _unfenced(text: str) -> str:
    return _FENCE_RE.sub("", text)


def _extracted(text: str) -> Optional[str]:
    match = _ARRAY_RE.search(_unfenced(text))
    return match.group(0) if match else None


def _repaired(text: str) -> Optional[str]:
    cleaned = _unfenced(text)
    start = cleaned.find("[")
    if start == -1:
        return None
    truncated = cleaned[start:].strip()
    last_brace = truncated.rfind("}")
    if last_brace == -1:
        return None
    return truncated[: last_brace + 1] + "]"


LADDER: List[Tuple[str, Callable[[str], Optional[str]]]] = [
    ("strict", _strict),
    ("unfenced", _unfenced),
    ("extracted", _extracted),
    ("repaired", _repaired),
]


def _as_list(data: Any) -> Optional[list]:
    if isinstance(data, list):
        return data
    # Some models wrap the array: {"opportunities": [...]}
    if isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                return value
    return None


def decode_json_array(text: str) -> Tuple[list, str]:
    """
    Run the ladder and return (items, step name).

    Raises:
        GeneratorParseError: no step produced a JSON array
    """
    if not text or not text.strip():
        raise GeneratorParseError("Empty AI response")

    for name, step in LADDER:
        candidate = step(text)
        if candidate is None:
            continue
        try:
            items = _as_list(json.loads(candidate))
        except json.JSONDecodeError:
            continue
        if items is not None:
            if name == "repaired":
                logger.info("Repaired truncated JSON response", items=len(items))
            return items, name

    raise GeneratorParseError("Could not extract JSON array from AI response", text[:PREVIEW_CHARS])


def decode_suggestions(text: str, iteration: int) -> List[OpportunitySuggestion]:
    """Decode AI text into suggestions stamped with `iteration`."""
    items, step = decode_json_array(text)

    suggestions: List[OpportunitySuggestion] = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict):
            skipped += 1
            continue
        # Generator-supplied ids are not trusted to be unique
        data = {k: v for k, v in item.items() if k not in ("id", "iterationSource", "iteration_source")}
        try:
            suggestion = OpportunitySuggestion.model_validate({**data, "iterationSource": iteration})
        except ValidationError as e:
            skipped += 1
            logger.warning("Skipping invalid suggestion", error_count=e.error_count(), keyword=item.get("keyword"))
            continue
        suggestions.append(suggestion)

    if not suggestions:
        raise GeneratorParseError(f"AI response contained no valid suggestions ({skipped} invalid)", text[:PREVIEW_CHARS])

    logger.debug("Decoded suggestions", step=step, count=len(suggestions), skipped=skipped)
    return suggestions
