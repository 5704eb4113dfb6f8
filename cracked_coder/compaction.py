from __future__ import annotations
import logging
from dataclasses import replace
from typing import Callable, Optional

from .context import ContextManager

logger = logging.getLogger(__name__)


class ContextEvictor:
    """Keeps the flattened context inside the active model's window.

    Only conversation turns are dropped, oldest first. Operation records and
    the phase instruction always survive.
    """

    def __init__(self, context: ContextManager, window: Callable[[], int]):
        self.context = context
        self.window = window

    def evict(self, max_tokens: Optional[int] = None) -> bool:
        limit = max_tokens if max_tokens is not None else self.window()
        data = self.context.store.get()
        current = self.context.get_total_tokens(data)
        logger.info(f"Evictor check: {current:,} tokens, limit {limit:,}, {len(data.turns)} turns")
        if current <= limit:
            return False

        turns = list(data.turns)
        removed = 0
        while current > limit and turns:
            turns.pop(0)
            removed += 1
            current = self.context.get_total_tokens(replace(data, turns=turns))

        self.context.store.set(replace(data, turns=turns))
        if current > limit:
            logger.warning(f"History exhausted, context still {current:,} tokens over limit {limit:,}")
        logger.info(f"Evicted {removed} turns, now {current:,} tokens")
        return removed > 0
