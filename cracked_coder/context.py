from __future__ import annotations
import itertools
import logging
import os
import re
import time
from dataclasses import dataclass, field, replace
from typing import Optional, Union

from .errors import ContextError
from .phases import Phase, PhaseManager
from .tags import extract_tag, extract_tags, extract_all_tags_with_content
from .tokens import estimate_messages_tokens, estimate_tokens, TURN_OVERHEAD_TOKENS

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant", "system")

PHASE_PROMPT_RE = re.compile(r"<phase_prompt>(.*?)</phase_prompt>", re.DOTALL)

# System turns carrying these markers repeat what the operation records already render
OPERATION_MARKERS = ("Content of", "Command:", "Command executed:", "FILE CREATED AND EXISTS:", "Written to")

_ticks = itertools.count()


def _now() -> tuple[float, int]:
    # wall clock plus a tie breaker so records created in the same instant keep creation order
    return (time.time(), next(_ticks))


@dataclass
class Turn:
    role: str
    content: str


@dataclass
class FileOperation:
    kind: str  # read_file | write_file
    path: str
    content: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    timestamp: tuple[float, int] = field(default_factory=_now)


@dataclass
class CommandOperation:
    command: str
    output: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    timestamp: tuple[float, int] = field(default_factory=_now)


Operation = Union[FileOperation, CommandOperation]


@dataclass
class PhaseInstruction:
    phase: Phase
    content: str
    timestamp: tuple[float, int] = field(default_factory=_now)


@dataclass
class ContextData:
    turns: list[Turn] = field(default_factory=list)
    file_operations: dict[str, FileOperation] = field(default_factory=dict)
    command_operations: dict[str, CommandOperation] = field(default_factory=dict)
    phase_instructions: dict[Phase, PhaseInstruction] = field(default_factory=dict)
    system_instructions: Optional[str] = None

    def copy(self) -> "ContextData":
        return ContextData(
            turns=list(self.turns),
            file_operations=dict(self.file_operations),
            command_operations=dict(self.command_operations),
            phase_instructions=dict(self.phase_instructions),
            system_instructions=self.system_instructions,
        )

    def latest_phase_instruction(self) -> Optional[PhaseInstruction]:
        if not self.phase_instructions:
            return None
        return max(self.phase_instructions.values(), key=lambda p: p.timestamp)


def normalize_path(path: str) -> str:
    return os.path.normpath(path.strip())


def _file_key(kind: str, path: str) -> str:
    return f"{kind}:{normalize_path(path)}"


class ContextStore:
    """Canonical conversation state for one session."""

    def __init__(self):
        self._data = ContextData()

    def get(self) -> ContextData:
        return self._data

    def set(self, data: ContextData) -> None:
        latest = data.latest_phase_instruction()
        if latest is not None and len(data.phase_instructions) > 1:
            data = replace(data, phase_instructions={latest.phase: latest})
        self._data = data

    def set_system_instructions(self, text: Optional[str]) -> None:
        self._data = replace(self._data, system_instructions=text)

    def cleanup_phase_content(self) -> None:
        self._data = replace(self._data, phase_instructions={})

    def clear(self) -> None:
        self._data = ContextData(system_instructions=self._data.system_instructions)


class ContextBuilder:
    """Folds turns into ContextData and flattens ContextData into model messages.

    build() and update_operation_result() never mutate their input; they
    return a new ContextData for the store to keep.
    """

    def build(self, role: str, content: str, phase: Phase, existing: ContextData) -> ContextData:
        if role not in VALID_ROLES:
            raise ContextError(f"Invalid role '{role}', expected one of {', '.join(VALID_ROLES)}")
        if not content or not content.strip():
            raise ContextError("Message content must not be empty")

        data = existing.copy()

        instructions = [m.strip() for m in PHASE_PROMPT_RE.findall(content) if m.strip()]
        if instructions and phase not in data.phase_instructions:
            data.phase_instructions[phase] = PhaseInstruction(phase=phase, content=instructions[-1])

        if role == "assistant":
            for op in self.extract_operations(content):
                self._merge_operation(data, op)

        data.turns = [t for t in data.turns if not self._is_instruction_only(t.content)]

        residual = PHASE_PROMPT_RE.sub("", content).strip()
        if residual:
            data.turns.append(Turn(role=role, content=residual))
        return data

    @staticmethod
    def _is_instruction_only(content: str) -> bool:
        return bool(PHASE_PROMPT_RE.search(content)) and not PHASE_PROMPT_RE.sub("", content).strip()

    @staticmethod
    def extract_operations(content: str) -> list[Operation]:
        ops: list[Operation] = []
        for block in extract_all_tags_with_content(content, "read_file"):
            for path in extract_tags(block, "path"):
                if path:
                    ops.append(FileOperation(kind="read_file", path=normalize_path(path)))
        for block in extract_all_tags_with_content(content, "write_file"):
            path = extract_tag(block, "path")
            if isinstance(path, list):
                path = path[0]
            if path:
                ops.append(FileOperation(kind="write_file", path=normalize_path(path)))
        for block in extract_all_tags_with_content(content, "execute_command"):
            command = extract_tag(block, "command") or extract_tag(block, "execute_command")
            if isinstance(command, list):
                command = command[0]
            if command:
                ops.append(CommandOperation(command=command))
        return ops

    @staticmethod
    def _merge_operation(data: ContextData, op: Operation) -> None:
        if isinstance(op, FileOperation):
            key = _file_key(op.kind, op.path)
            if key not in data.file_operations:
                data.file_operations[key] = op
        else:
            if op.command not in data.command_operations:
                data.command_operations[op.command] = op

    def update_operation_result(self, kind: str, identifier: str, existing: ContextData,
                                data: Optional[str] = None, success: bool = True,
                                error: Optional[str] = None) -> ContextData:
        """Record an action outcome.

        A record that already succeeded only yields to a newer success; failed or
        unconfirmed outcomes never replace it.
        """
        out = existing.copy()
        if kind == "execute_command":
            current = out.command_operations.get(identifier)
            if current is not None and current.success is True and success is not True:
                return existing
            out.command_operations[identifier] = CommandOperation(
                command=identifier, output=data, success=success, error=error,
                timestamp=current.timestamp if current else _now(),
            )
            return out

        path = normalize_path(identifier)
        key = _file_key(kind, path)
        current = out.file_operations.get(key)
        if current is not None and current.success is True and success is not True:
            return existing
        out.file_operations[key] = FileOperation(
            kind=kind, path=path, content=data, success=success, error=error,
            timestamp=current.timestamp if current else _now(),
        )
        return out

    @staticmethod
    def _status(op: Operation) -> str:
        if op.success is False:
            return f"FAILED (Error: {op.error})" if op.error else "FAILED"
        return "PENDING"

    def _render_pending(self, op: Operation) -> str:
        if isinstance(op, CommandOperation):
            return f"Command: {op.command} [{self._status(op)}]"
        return f"File {op.kind} {op.path} [{self._status(op)}]"

    @staticmethod
    def _render_success(op: Operation) -> str:
        if isinstance(op, CommandOperation):
            return f"Command: {op.command}\n{op.output}" if op.output else f"Command: {op.command}"
        if op.kind == "read_file":
            return f"Content of {op.path}:\n{op.content or ''}"
        return f"Written to {op.path}"

    def flatten(self, data: ContextData) -> list[dict]:
        messages: list[dict] = []

        latest = data.latest_phase_instruction()
        if latest is not None:
            messages.append({"role": "system", "content": f"<phase_prompt>{latest.content}</phase_prompt>"})

        ops: list[Operation] = list(data.file_operations.values()) + list(data.command_operations.values())
        ops.sort(key=lambda o: o.timestamp)
        for op in ops:
            if op.success is not True:
                messages.append({"role": "system", "content": self._render_pending(op)})
        for op in ops:
            if op.success is True:
                messages.append({"role": "assistant", "content": self._render_success(op)})

        for turn in data.turns:
            if turn.role == "system":
                if data.system_instructions and turn.content == data.system_instructions:
                    continue
                if any(marker in turn.content for marker in OPERATION_MARKERS):
                    continue
            messages.append({"role": turn.role, "content": turn.content})
        return messages


class ContextManager:
    """The session's handle on context state: store, builder and the active phase."""

    def __init__(self, phase_manager: PhaseManager, store: Optional[ContextStore] = None,
                 builder: Optional[ContextBuilder] = None):
        self.phase_manager = phase_manager
        self.store = store or ContextStore()
        self.builder = builder or ContextBuilder()

    def add_message(self, role: str, content: str) -> None:
        data = self.builder.build(role, content, self.phase_manager.current_phase, self.store.get())
        self.store.set(data)
        logger.debug(f"Added {role} turn ({len(content):,} chars), {len(data.turns)} turns retained")

    def update_operation_result(self, kind: str, identifier: str, data: Optional[str] = None,
                                success: bool = True, error: Optional[str] = None) -> None:
        updated = self.builder.update_operation_result(kind, identifier, self.store.get(),
                                                       data=data, success=success, error=error)
        self.store.set(updated)

    def has_file_operation(self, kind: str, path: str) -> bool:
        return _file_key(kind, path) in self.store.get().file_operations

    def set_system_instructions(self, text: Optional[str]) -> None:
        self.store.set_system_instructions(text)

    def cleanup_phase_content(self) -> None:
        self.store.cleanup_phase_content()

    def clear(self) -> None:
        self.store.clear()

    def get_messages(self) -> list[dict]:
        data = self.store.get()
        messages = self.builder.flatten(data)
        if data.system_instructions:
            messages.insert(0, {"role": "system", "content": data.system_instructions})
        return messages

    def get_total_tokens(self, data: Optional[ContextData] = None) -> int:
        data = data or self.store.get()
        total = estimate_messages_tokens(self.builder.flatten(data))
        if data.system_instructions:
            total += TURN_OVERHEAD_TOKENS + estimate_tokens(data.system_instructions)
        return total
