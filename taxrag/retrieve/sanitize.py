"""Prompt-injection scrubbing of retrieved passage text."""

from __future__ import annotations

import re

_CODE_FENCE = re.compile(r"```.*?```", re.DOTALL)

BLOCKLIST: tuple[re.Pattern[str], ...] = (
    re.compile(r"ignore\s+all\s+previous", re.IGNORECASE),
    re.compile(r"reset\s+the\s+rules", re.IGNORECASE),
    re.compile(r"you\s+are\s+now", re.IGNORECASE),
    re.compile(r"ignor[aá]\s+(todas\s+)?las\s+instrucciones", re.IGNORECASE),
    re.compile(r"system\s*:", re.IGNORECASE),
    re.compile(r"assistant\s*:", re.IGNORECASE),
)


def sanitize_context(text: str) -> str:
    """
    Remove fenced code blocks, blank lines and any line that looks like
    an instruction to the model.
    """
    without_code = _CODE_FENCE.sub(" ", text or "")
    lines = [
        line for line in re.split(r"\r?\n", without_code)
        if line.strip() and not any(p.search(line) for p in BLOCKLIST)
    ]
    return "\n".join(lines)
