from __future__ import annotations
import logging
import os
import re
import uuid
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from .blueprints import get_blueprint
from .errors import PlannerDeadlockError
from .tags import extract_tag, validate_structure

logger = logging.getLogger(__name__)

FILE_MUTATIONS = ("delete_file", "move_file", "copy_file")


@dataclass(frozen=True)
class Action:
    id: str
    type: str
    content: str
    depends_on: frozenset = frozenset()


@dataclass
class ActionGroup:
    actions: list[Action]
    parallel: bool


@dataclass
class ExecutionPlan:
    groups: list[ActionGroup] = field(default_factory=list)

    def actions(self) -> list[Action]:
        return [a for g in self.groups for a in g.actions]


def _first(value) -> Optional[str]:
    if isinstance(value, list):
        return value[0] if value else None
    return value


class ActionPlanner:
    """Finds the actions in one model response and orders them into groups.

    Dependencies are inferred with a content-containment heuristic, not real
    data-flow analysis, so they can over- or under-match:
      - a write depends on an earlier read whose extracted content appears in the write's content
      - a delete/move/copy depends on an earlier write to the same resolved path
    """

    def __init__(self, tags: Iterable[str], root: str = "."):
        self.tags = list(tags)
        self.root = root

    def find_actions(self, text: str, processed: Optional[set] = None) -> list[Action]:
        if not text or validate_structure(text):
            return []
        processed = processed if processed is not None else set()
        alternation = "|".join(re.escape(t) for t in self.tags)
        pattern = re.compile(rf"<({alternation})>(?:.*?)</\1>", re.DOTALL)
        actions = []
        for m in pattern.finditer(text):
            content = m.group(0)
            if content in processed:
                continue
            processed.add(content)
            actions.append(Action(id=uuid.uuid4().hex, type=m.group(1), content=content))
        return actions

    @staticmethod
    def extract_content(action: Action) -> str:
        content = _first(extract_tag(action.content, "content"))
        if content:
            return content
        path = _first(extract_tag(action.content, "path"))
        if path:
            return path
        if action.type == "read_file":
            return action.content
        return ""

    def resolve_path(self, action: Action) -> Optional[str]:
        path = _first(extract_tag(action.content, "path"))
        if path is None and action.type in ("move_file", "copy_file"):
            path = _first(extract_tag(action.content, "source_path"))
        if not path:
            return None
        return os.path.abspath(os.path.join(self.root, path))

    def detect_dependencies(self, actions: list[Action]) -> list[Action]:
        out: list[Action] = []
        for i, action in enumerate(actions):
            deps = set()
            earlier = actions[:i]
            if action.type == "write_file":
                written = self.extract_content(action)
                for prev in earlier:
                    if prev.type != "read_file":
                        continue
                    read = self.extract_content(prev)
                    if read and read in written:
                        deps.add(prev.id)
            elif action.type in FILE_MUTATIONS:
                target = self.resolve_path(action)
                for prev in earlier:
                    if prev.type == "write_file" and target and self.resolve_path(prev) == target:
                        deps.add(prev.id)
            out.append(replace(action, depends_on=frozenset(deps)))
        return out

    def create_plan(self, actions: list[Action]) -> ExecutionPlan:
        actions = self.detect_dependencies(actions)
        unprocessed = {a.id for a in actions}
        plan = ExecutionPlan()

        while unprocessed:
            remaining = [a for a in actions if a.id in unprocessed]
            ready = [a for a in remaining if not (a.depends_on & unprocessed)]
            if not ready:
                raise PlannerDeadlockError([f"{a.type}:{a.id[:8]}" for a in remaining])

            parallel = []
            sequential = []
            for a in ready:
                bp = get_blueprint(a.type)
                if bp is not None and bp.can_run_in_parallel:
                    parallel.append(a)
                else:
                    sequential.append(a)
            if parallel:
                plan.groups.append(ActionGroup(actions=parallel, parallel=True))
            for a in sequential:
                plan.groups.append(ActionGroup(actions=[a], parallel=False))
            unprocessed -= {a.id for a in ready}

        logger.info(f"Planned {len(actions)} actions into {len(plan.groups)} groups")
        return plan
