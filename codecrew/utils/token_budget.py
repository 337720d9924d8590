"""Token budgeting for prompt context."""

import math
from typing import List

from ..models import ReferenceMaterial


TRUNCATION_MARKER = "\n\n... [context truncated for efficiency] ...\n\n"


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def enforce_token_budget(text: str, max_tokens: int = 4000) -> str:
    """
    Truncate text to a token budget, keeping its head and tail.

    Args:
        text: Text to truncate
        max_tokens: Maximum tokens allowed

    Returns:
        The original text when it fits, otherwise 70% head + marker + 30% tail
    """
    if not text:
        return ""
    if estimate_tokens(text) <= max_tokens:
        return text

    char_limit = max_tokens * 4
    head = text[: int(char_limit * 0.7)]
    tail_chars = int(char_limit * 0.3)
    tail = text[-tail_chars:] if tail_chars else ""
    return head + TRUNCATION_MARKER + tail


def _truncate_items(items: List[str], max_tokens: int) -> List[str]:
    result: List[str] = []
    used = 0
    for item in items:
        tokens = estimate_tokens(item)
        if used + tokens <= max_tokens:
            result.append(item)
            used += tokens
        elif not result:
            result.append(enforce_token_budget(item, max_tokens))
            break
        else:
            break
    return result


def enforce_reference_budget(material: ReferenceMaterial, max_tokens: int = 3000) -> ReferenceMaterial:
    """
    Fit reference material into a token budget.

    Examples get 50% of the budget, best practices 30% and docs 20%.
    Material that already fits is returned unchanged.
    """
    examples_text = "\n\n".join(material.examples)
    practices_text = "\n".join(material.best_practices)
    docs_text = "\n\n".join(material.docs)

    if estimate_tokens(examples_text + practices_text + docs_text) <= max_tokens:
        return material

    docs = enforce_token_budget(docs_text, int(max_tokens * 0.2))
    return ReferenceMaterial(
        examples=_truncate_items(material.examples, int(max_tokens * 0.5)),
        best_practices=_truncate_items(material.best_practices, int(max_tokens * 0.3)),
        docs=[docs] if docs else [],
    )


def render_reference(material: ReferenceMaterial) -> str:
    """Render reference material as a prompt section."""
    sections = []
    if material.examples:
        sections.append("REFERENCE EXAMPLES:\n" + "\n\n".join(material.examples))
    if material.best_practices:
        sections.append("BEST PRACTICES:\n" + "\n".join(f"- {p}" for p in material.best_practices))
    if material.docs:
        sections.append("DOCUMENTATION:\n" + "\n\n".join(material.docs))
    return "\n\n".join(sections)
