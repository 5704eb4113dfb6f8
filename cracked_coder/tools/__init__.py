from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Any, Callable, Optional
import asyncio
import html
import inspect
import logging
import re

from ..blueprints import BLUEPRINTS, get_blueprint
from ..config import AgentConfig
from ..tags import extract_tag, extract_tags
from .filesystem import read_files, write_file, delete_file, move_file, copy_file, list_dir, read_directory
from .search import search_string, search_file, relative_path_lookup
from .shell import run
from .git_tools import git_diff, git_pr_diff
from .web_io import fetch_url

logger = logging.getLogger(__name__)

ToolFn = Callable[[Dict[str, Any]], Any]


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    selected_model: Optional[str] = None
    regenerate: bool = False


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("true", "1", "yes")


def _body(content: str, tag: str) -> str:
    value = extract_tag(content, tag)
    if isinstance(value, list):
        value = value[0]
    return value or ""


class ActionRegistry:
    """Maps each action tag to its implementation and knows how to read its parameters."""

    def __init__(self, repo: str, config: Optional[AgentConfig] = None):
        self.repo = repo
        self.config = config or AgentConfig()
        lock_files = self.config.lock_files
        self._tools: dict[str, ToolFn] = {
            # File system
            "read_file": lambda a: read_files(self.repo, a["path"]),
            "write_file": lambda a: write_file(self.repo, a["path"], a["content"], type=a["type"]),
            "delete_file": lambda a: delete_file(self.repo, a["path"]),
            "move_file": lambda a: move_file(self.repo, a["source_path"], a["destination_path"]),
            "copy_file": lambda a: copy_file(self.repo, a["source_path"], a["destination_path"]),
            "list_directory_files": lambda a: list_dir(self.repo, a["path"], recursive=_as_bool(a.get("recursive"))),
            "read_directory": lambda a: read_directory(self.repo, a["directory"]),
            # Search
            "search_string": lambda a: search_string(self.repo, a["directory"], a["term"]),
            "search_file": lambda a: search_file(self.repo, a["directory"], a["term"]),
            "relative_path_lookup": lambda a: relative_path_lookup(self.repo, a["source_path"], a["path"],
                                                                   threshold=a.get("threshold")),
            # Shell, git and web
            "execute_command": lambda a: run(self.repo, a["command"], timeout=self.config.command_timeout),
            "git_diff": lambda a: git_diff(self.repo, a["fromCommit"], a["toCommit"], lock_files=lock_files),
            "git_pr_diff": lambda a: git_pr_diff(self.repo, a["baseBranch"], a["compareBranch"],
                                                 lock_files=lock_files),
            "fetch_url": lambda a: fetch_url(self.repo, a["url"]),
            # Conversation control
            "end_task": lambda a: a.get("message") or "Task completed",
        }

    def register(self, tag: str, fn: ToolFn) -> None:
        """Bind a handler that needs agent state (phase transitions, explainers)."""
        if tag not in BLUEPRINTS:
            raise KeyError(f"no blueprint for action '{tag}'")
        self._tools[tag] = fn

    def implemented_tags(self) -> list[str]:
        return [t for t in BLUEPRINTS if t in self._tools]

    def parse_params(self, tag: str, content: str) -> Dict[str, Any]:
        bp = get_blueprint(tag)
        if bp is None:
            return {}
        params: Dict[str, Any] = {}
        for p in bp.parameters:
            if p.multiple:
                values = extract_tags(content, p.name)
                if values:
                    params[p.name] = values
            elif p.name == "content":
                # file bodies may themselves mention <content>; take the outermost span.
                # Models escape markup inside it, so entities are decoded before writing.
                m = re.search(r"<content>(.*)</content>", content, re.DOTALL)
                if m:
                    params["content"] = html.unescape(m.group(1).strip("\n"))
            else:
                value = extract_tag(content, p.name)
                if isinstance(value, list):
                    value = value[0]
                if value is not None:
                    params[p.name] = value
        if tag == "execute_command":
            command = extract_tag(content, "command")
            params["command"] = (command[0] if isinstance(command, list) else command) or _body(content, tag)
        elif tag == "end_task":
            params["message"] = _body(content, tag)
        elif tag == "end_phase":
            params["next_phase"] = _body(content, tag)
        return params

    def validate_params(self, tag: str, params: Dict[str, Any]) -> Optional[str]:
        bp = get_blueprint(tag)
        if bp is None:
            return f"Unknown action: {tag}"
        for p in bp.parameters:
            if p.required and not params.get(p.name):
                return f"Missing required parameter <{p.name}> for <{tag}>"
        if tag == "execute_command" and not params.get("command"):
            return "Missing command for <execute_command>"
        return None

    async def dispatch(self, tag: str, params: Dict[str, Any]) -> ActionResult:
        if tag not in self._tools:
            return ActionResult(success=False, error=f"unknown action: {tag}")
        fn = self._tools[tag]
        try:
            if inspect.iscoroutinefunction(fn):
                out = await fn(params or {})
            else:
                out = await asyncio.to_thread(fn, params or {})
        except Exception as e:
            logger.debug(f"Action {tag} raised {type(e).__name__}: {e}")
            return ActionResult(success=False, error=f"{type(e).__name__}: {e}")
        if isinstance(out, ActionResult):
            return out
        if isinstance(out, str) and out.startswith("ERROR:"):
            return ActionResult(success=False, error=out[len("ERROR:"):].strip())
        return ActionResult(success=True, data=out)
