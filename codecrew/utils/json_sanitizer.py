"""
Lenient JSON parsing for model output.

Different backing models wrap JSON in different ways: markdown fences,
reasoning tags, line comments, trailing commas, smart quotes and stray
control characters. ``sanitize_json_response`` strips the structural noise;
``safe_parse_json`` additionally applies quote repairs when a first parse
attempt fails.
"""

import json
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_THINK_TAGS = re.compile(r"<(think|thinking)>[\s\S]*?</\1>", re.IGNORECASE)
_FENCED_BLOCK = re.compile(
    r"```(?:json|typescript|javascript|ts|js)?[ \t]*\n?([\s\S]*?)\s*```",
    re.IGNORECASE,
)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_DOUBLED_QUOTE = re.compile(r'""(?=\w)')
_SMART_DOUBLE = re.compile("[“”]")
_SMART_SINGLE = re.compile("[‘’]")


def _strip_line_comments(text: str) -> str:
    """Remove ``//`` comments outside string literals, keeping ``://`` URLs."""
    out = []
    in_string = False
    escaped = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif text.startswith("//", i) and (i == 0 or text[i - 1] != ":"):
            end = text.find("\n", i)
            if end == -1:
                break
            i = end
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _extract_outermost(text: str) -> str:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        start, end = text.find("["), text.rfind("]")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


def sanitize_json_response(response: str) -> str:
    """
    Strip the structural noise models put around JSON.

    Args:
        response: Raw model output

    Returns:
        Text that should parse as JSON for well-behaved models
    """
    cleaned = (response or "").strip()
    cleaned = _CONTROL_CHARS.sub(" ", cleaned)
    cleaned = _THINK_TAGS.sub("", cleaned).strip()

    # Fences only matter when the payload is not already bare JSON
    if not cleaned.startswith(("{", "[")):
        match = _FENCED_BLOCK.search(cleaned)
        if match:
            cleaned = match.group(1)

    cleaned = _strip_line_comments(cleaned)
    cleaned = _extract_outermost(cleaned)
    cleaned = _TRAILING_COMMA.sub(r"\1", cleaned)
    return cleaned.strip()


def _repair_quotes(text: str) -> str:
    text = _DOUBLED_QUOTE.sub('"', text)
    text = _SMART_DOUBLE.sub('"', text)
    return _SMART_SINGLE.sub("'", text)


def strict_parse_json(response: str) -> Any:
    """
    Parse model output as JSON, raising when it cannot be recovered.

    Raises:
        json.JSONDecodeError: If no JSON could be recovered
    """
    sanitized = sanitize_json_response(response)
    try:
        # strict=False accepts raw newlines inside string values
        return json.loads(sanitized, strict=False)
    except json.JSONDecodeError:
        return json.loads(_repair_quotes(sanitized), strict=False)


def safe_parse_json(response: str, fallback: Optional[Any] = None) -> Any:
    """Parse model output as JSON, returning ``fallback`` on failure."""
    try:
        return strict_parse_json(response)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"JSON parse failed after sanitization: {e}")
        return fallback

