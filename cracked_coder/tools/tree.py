from __future__ import annotations
import os

"""
Tool: repo_tree
Description: Directory tree with depth control and simple ignore patterns. Feeds the
environment details sent with the first message of a task.
Args: {"path": ".", "max_depth": 3, "ignore": [".git", "node_modules", ".venv"]}
"""


def repo_tree(repo: str, path: str = ".", max_depth: int = 3, ignore: list[str] | None = None,
              max_lines: int = 500) -> str:
    ignore = set(ignore or [".git", "node_modules", ".venv", "__pycache__"])
    root = os.path.abspath(os.path.join(repo, path))
    base = os.path.abspath(repo)
    if os.path.commonpath([root, base]) != base:
        raise ValueError("Path escape not allowed")

    lines: list[str] = []
    for current_root, dirs, files in os.walk(root):
        rel = os.path.relpath(current_root, base)
        depth = 0 if rel == "." else rel.count(os.sep) + 1
        if depth >= max_depth:
            dirs[:] = []
        dirs[:] = [d for d in sorted(dirs) if d not in ignore]
        files = [f for f in sorted(files) if f not in ignore]
        indent = "  " * depth
        if rel != ".":
            lines.append(f"{'  ' * (depth - 1)}{os.path.basename(rel)}/")
        for f in files:
            lines.append(f"{indent}{f}")
        if len(lines) >= max_lines:
            lines = lines[:max_lines]
            lines.append("[TRUNCATED]")
            break
    return "\n".join(lines)
