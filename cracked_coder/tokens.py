from __future__ import annotations
import math
from typing import Iterable, Mapping, Union

"""
Heuristic token accounting.

This is an approximation, not a tokenizer. The contract callers may rely on:
appending text never lowers the estimate, fenced code costs fewer tokens per
character than prose, and every message carries a small fixed overhead.
"""

PROSE_CHARS_PER_TOKEN = 3.8
CODE_CHARS_PER_TOKEN = 5.5
FENCE = "```"
FENCE_TOKENS = 2
TURN_OVERHEAD_TOKENS = 4


def _split(text: str) -> tuple[int, int, int]:
    """Return (prose chars, code chars, fence count). An unclosed fence runs to the end."""
    prose = code = fences = 0
    in_code = False
    pos = 0
    while True:
        idx = text.find(FENCE, pos)
        if idx < 0:
            break
        if in_code:
            code += idx - pos
        else:
            prose += idx - pos
        fences += 1
        in_code = not in_code
        pos = idx + len(FENCE)
    if in_code:
        code += len(text) - pos
    else:
        prose += len(text) - pos
    return prose, code, fences


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    prose, code, fences = _split(text)
    return math.ceil(prose / PROSE_CHARS_PER_TOKEN + code / CODE_CHARS_PER_TOKEN + fences * FENCE_TOKENS)


def estimate_turn_tokens(turn: Union[Mapping, object]) -> int:
    content = turn.get("content", "") if isinstance(turn, Mapping) else getattr(turn, "content", "")
    return TURN_OVERHEAD_TOKENS + estimate_tokens(content or "")


def estimate_messages_tokens(messages: Iterable) -> int:
    return sum(estimate_turn_tokens(m) for m in messages)
