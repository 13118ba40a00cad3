import json
import re
from typing import Any, Optional
from utils.core.log import get_logger

"""
Script intended for validating and correcting JSON from LLM output.

The repair ladder used by every quote tool:
    1. parse the response as-is
    2. strip a ```json fenced block and parse its body
    3. cut the first balanced {...} span out of the text and parse it
A final scrub of common glitches (trailing commas, control characters) is
tried on each candidate before giving up.
"""

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


class JSONRepairError(ValueError):
    """Raised when no stage of the repair ladder produced a JSON object."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw or ""

    @property
    def excerpt(self) -> str:
        return self.raw[:500]


def clean_malformed_json(raw: str, *, label: Optional[str] = None) -> str:
    """
    Best-effort scrub for common LLM JSON glitches.

    The heuristics are idempotent, running twice is safe.
    """
    logger = get_logger()

    try:
        # fix '}, ], {' breaks in arrays
        raw = re.sub(r"\},\s*\],\s*\{", r"}, {", raw)

        # drop trailing commas before ] or }
        raw = re.sub(r",\s*([\]}])", r"\1", raw)

        # replace raw control characters (0x00-0x1F) with space
        raw = re.sub(r"(?<!\\)[\x00-\x08\x0B\x0C\x0E-\x1F]", " ", raw)

        return raw
    except Exception as e:
        logger.debug(f"[clean_malformed_json] ({label or 'json'}) failed: {e}")
        return raw


def extract_fenced_block(text: str) -> Optional[str]:
    """Body of the first ``` fenced block, or None."""
    m = _FENCE_RE.search(text or "")
    if not m:
        return None
    body = m.group(1).strip()
    return body or None


def extract_balanced_object(text: str) -> Optional[str]:
    """
    Return the first balanced ``{...}`` span in *text*.

    Braces inside JSON string literals are ignored. Falls back to the greedy
    first-``{``-to-last-``}`` span when the braces never balance.
    """
    if not text:
        return None
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_str = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    end = text.rfind("}")
    if end > start:
        return text[start : end + 1]
    return None


def _loads_object(candidate: str, label: str) -> Optional[dict]:
    logger = get_logger()
    for attempt in (candidate, clean_malformed_json(candidate, label=label)):
        try:
            value = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        # a single-object list is accepted as that object
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], dict):
            value = value[0]
        if isinstance(value, dict):
            return value
        logger.debug(f"[{label}] JSON parsed but is {type(value).__name__}, not an object")
        return None
    return None


def parse_llm_json(raw: str, *, label: str = "llm") -> dict[str, Any]:
    """
    Parse an LLM response into a JSON object using the repair ladder.

    Raises:
        JSONRepairError: every stage failed. ``.excerpt`` keeps the first
        500 characters of the response for diagnostics.
    """
    logger = get_logger()
    if raw is None or not str(raw).strip():
        raise JSONRepairError("Empty LLM response", raw or "")

    text = str(raw).strip()
    if text.startswith("\ufeff"):
        text = text[1:]

    stages = (
        ("direct", lambda t: t),
        ("fenced", extract_fenced_block),
        ("balanced", extract_balanced_object),
    )
    for stage, pick in stages:
        candidate = pick(text)
        if not candidate:
            continue
        parsed = _loads_object(candidate, label)
        if parsed is not None:
            if stage != "direct":
                logger.debug(f"[{label}] JSON recovered at stage '{stage}'")
            return parsed

    logger.error(f"[{label}] could not parse LLM JSON. Raw start: {text[:500]!r}")
    raise JSONRepairError("LLM response is not valid JSON", text)


def main() -> bool:
    from utils.core.log import scope_tool_logger, set_logger

    set_logger(scope_tool_logger("system_check", "jsonval_test"))

    bare = '{"a": 1, "b": [1, 2]}'
    fenced = 'Here you go:\n```json\n{"a": 1, "b": [1, 2]}\n```\nThanks'
    chatty = 'Result: {"a": 1, "b": [1, 2],} trailing words {not json}'

    expected = {"a": 1, "b": [1, 2]}
    for sample in (bare, fenced, chatty):
        if parse_llm_json(sample, label="check") != expected:
            raise ValueError(f"repair ladder mismatch for {sample!r}")

    try:
        parse_llm_json("no json here", label="check")
    except JSONRepairError:
        pass
    else:
        raise ValueError("garbage input was accepted")

    print("JSONVAL TEST OK")
    return True


if __name__ == "__main__":
    main()
