from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .blueprints import get_blueprint, get_priority
from .planner import Action

logger = logging.getLogger(__name__)


@dataclass
class QueuedAction:
    action: Action
    priority: int
    requires_processing: bool
    result: Any = None


class ActionQueue:
    """Priority-ordered actions of the current round.

    Entries whose blueprint requires processing stay queued after dequeue()
    until set_result() records a success. A failed one keeps its slot, which
    shows up as is_stalled().
    """

    def __init__(self):
        self._entries: list[QueuedAction] = []
        self.processed_results: dict[str, Any] = {}

    def enqueue(self, action: Action) -> QueuedAction:
        bp = get_blueprint(action.type)
        entry = QueuedAction(
            action=action,
            priority=int(get_priority(action.type)),
            requires_processing=bool(bp and bp.requires_processing),
        )
        # stable: equal priorities keep insertion order
        idx = len(self._entries)
        for i, existing in enumerate(self._entries):
            if existing.priority > entry.priority:
                idx = i
                break
        self._entries.insert(idx, entry)
        return entry

    def dequeue(self) -> Optional[QueuedAction]:
        """First entry without a recorded result. Entries that need no processing leave the queue here."""
        for entry in self._entries:
            if entry.result is not None:
                continue
            if not entry.requires_processing:
                self._entries.remove(entry)
            return entry
        return None

    def pending(self) -> list[QueuedAction]:
        """Every entry still waiting for a result, in priority order."""
        return [e for e in self._entries if e.result is None]

    def set_result(self, entry: QueuedAction, result: Any) -> None:
        if not entry.requires_processing:
            if entry in self._entries:
                self._entries.remove(entry)
            return
        entry.result = result
        if getattr(result, "success", False):
            self.processed_results[entry.action.id] = result
            self._entries.remove(entry)
        else:
            logger.info(f"Action {entry.action.type} failed and stays queued")

    def is_stalled(self) -> bool:
        return any(e.result is not None for e in self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def size(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self.processed_results.clear()
