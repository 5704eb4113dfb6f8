from __future__ import annotations
import difflib
import os
import shutil
from typing import Optional

"""
Tool: read_file
Description: Read one or more text files from the workspace.
Args: {"path": "relative/path" | ["a", "b"]}
Returns: file contents; several files are returned as "# File: <path>" sections.

Tool: write_file
Description: Create ("new") or replace ("update") a file.
Args: {"type": "new"|"update", "path": "relative/path", "content": "string"}

Tool: delete_file / move_file / copy_file
Args: {"path": "..."} / {"source_path": "...", "destination_path": "..."}

Tool: list_directory_files
Description: List files, shallow or recursive.
Args: {"path": ".", "recursive": true|false}

Tool: read_directory
Description: Read every text file directly inside a directory.
Args: {"directory": "relative/path"}
"""

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_READ_FILES = 4

EXCLUDE_DIRS = {
    '.git', '.svn', '.hg',
    'node_modules', 'bower_components',
    'venv', '.venv', 'env', '__pycache__', '.pytest_cache', '.tox', '.mypy_cache',
    'target', 'build', 'dist', 'out', 'coverage',
    '.idea', '.vscode',
}


def _abs(repo: str, path: str) -> str:
    root = os.path.abspath(repo)
    ap = os.path.abspath(os.path.join(root, path))
    if os.path.commonpath([ap, root]) != root:
        raise ValueError("Path escape not allowed")
    return ap


def find_similar_file(repo: str, path: str, cutoff: float = 0.6) -> Optional[str]:
    """Closest existing workspace file to path, by name similarity."""
    candidates = []
    for root, dirs, files in os.walk(repo):
        dirs[:] = [d for d in dirs if d not in EXCLUDE_DIRS]
        for fn in files:
            candidates.append(os.path.relpath(os.path.join(root, fn), repo))
    matches = difflib.get_close_matches(os.path.normpath(path), candidates, n=1, cutoff=cutoff)
    return matches[0] if matches else None


def read_file(repo: str, path: str) -> str:
    ap = _abs(repo, path)
    if os.path.getsize(ap) > MAX_FILE_SIZE:
        return f"ERROR: {path} is larger than {MAX_FILE_SIZE:,} bytes"
    with open(ap, "r", encoding="utf-8") as f:
        return f.read()


def read_files(repo: str, paths: list[str]) -> dict[str, str]:
    """Read several files; the first failure raises so the action is reported failed."""
    if len(paths) > MAX_READ_FILES:
        raise ValueError(f"read at most {MAX_READ_FILES} files at once, got {len(paths)}")
    out: dict[str, str] = {}
    for p in paths:
        content = read_file(repo, p)
        if content.startswith("ERROR:"):
            raise ValueError(content[len("ERROR:"):].strip())
        out[p] = content
    return out


def write_file(repo: str, path: str, content: str, type: str = "new") -> str:
    if type not in ("new", "update"):
        return f"ERROR: invalid write type '{type}', use 'new' or 'update'"
    if ".." in path.split("/") or ".." in path.split(os.sep):
        return "ERROR: path must not contain '..'"
    if len(content.encode("utf-8")) > MAX_FILE_SIZE:
        return f"ERROR: content is larger than {MAX_FILE_SIZE:,} bytes"
    abspath = _abs(repo, path)
    exists = os.path.exists(abspath)
    if type == "update" and not exists:
        similar = find_similar_file(repo, path)
        hint = f" Did you mean {similar}?" if similar else " Use type 'new' to create it."
        return f"ERROR: cannot update {path}, file does not exist.{hint}"
    os.makedirs(os.path.dirname(abspath), exist_ok=True)
    with open(abspath, "w", encoding="utf-8") as f:
        f.write(content)
    verb = "UPDATED" if exists else "CREATED"
    return f"{verb}: {path} ({len(content)} bytes)"


def delete_file(repo: str, path: str) -> str:
    ap = _abs(repo, path)
    if not os.path.isfile(ap):
        return f"ERROR: {path} does not exist"
    os.remove(ap)
    return f"DELETED: {path}"


def move_file(repo: str, source_path: str, destination_path: str) -> str:
    src, dst = _abs(repo, source_path), _abs(repo, destination_path)
    if not os.path.exists(src):
        return f"ERROR: {source_path} does not exist"
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    shutil.move(src, dst)
    return f"MOVED: {source_path} -> {destination_path}"


def copy_file(repo: str, source_path: str, destination_path: str) -> str:
    src, dst = _abs(repo, source_path), _abs(repo, destination_path)
    if not os.path.isfile(src):
        return f"ERROR: {source_path} does not exist"
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    shutil.copy2(src, dst)
    return f"COPIED: {source_path} -> {destination_path}"


def list_dir(repo: str, path: str = ".", recursive: bool = False, max_entries: int = 1000) -> str:
    base = _abs(repo, path)
    if not os.path.isdir(base):
        return f"ERROR: {path} is not a directory"
    if not recursive:
        return "\n".join(sorted(os.listdir(base)))

    acc = []
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d not in EXCLUDE_DIRS)
        for fn in sorted(files):
            if fn.endswith(('.pyc', '.pyo', '.so', '.dylib', '.dll', '.class')):
                continue
            acc.append(os.path.relpath(os.path.join(root, fn), repo))
            if len(acc) >= max_entries:
                acc.append(f"[TRUNCATED - showing first {max_entries} entries]")
                return "\n".join(acc)
    return "\n".join(acc)


def read_directory(repo: str, directory: str) -> dict[str, str]:
    base = _abs(repo, directory)
    if not os.path.isdir(base):
        raise ValueError(f"{directory} is not a directory")
    out: dict[str, str] = {}
    for fn in sorted(os.listdir(base)):
        ap = os.path.join(base, fn)
        if not os.path.isfile(ap) or os.path.getsize(ap) > MAX_FILE_SIZE:
            continue
        try:
            with open(ap, "r", encoding="utf-8") as f:
                out[os.path.relpath(ap, repo)] = f.read()
        except UnicodeDecodeError:
            # binary files are skipped
            continue
    return out
