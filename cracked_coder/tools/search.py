from __future__ import annotations
import difflib
import os
from typing import Optional

from .filesystem import _abs, EXCLUDE_DIRS

"""
Tool: search_string
Description: Case-insensitive literal search across file contents.
Args: {"directory": ".", "term": "text"}
Returns: "<path>:<line>:<text>" lines.

Tool: search_file
Description: Find files whose name contains term (case-insensitive).
Args: {"directory": ".", "term": "name fragment"}

Tool: relative_path_lookup
Description: Resolve a relative import path that may be wrong to the closest existing file.
Args: {"source_path": "src/a.ts", "path": "../utils/helper", "threshold": 0.6}
"""

MAX_HITS = 200


def _walk(base: str):
    for root, dirs, files in os.walk(base):
        dirs[:] = sorted(d for d in dirs if d not in EXCLUDE_DIRS)
        for fn in sorted(files):
            yield os.path.join(root, fn)


def search_string(repo: str, directory: str, term: str) -> str:
    if not term:
        return "ERROR: search term is empty"
    base = _abs(repo, directory)
    if not os.path.isdir(base):
        return f"ERROR: {directory} is not a directory"
    needle = term.lower()
    hits = []
    for p in _walk(base):
        rel = os.path.relpath(p, repo)
        try:
            with open(p, "r", encoding="utf-8", errors="ignore") as f:
                for i, line in enumerate(f, 1):
                    if needle in line.lower():
                        hits.append(f"{rel}:{i}:{line.strip()}")
        except OSError:
            continue
        if len(hits) >= MAX_HITS:
            hits.append(f"[TRUNCATED - first {MAX_HITS} matches]")
            break
    return "\n".join(hits) if hits else f"No matches for '{term}' in {directory}"


def search_file(repo: str, directory: str, term: str) -> str:
    if not term:
        return "ERROR: search term is empty"
    base = _abs(repo, directory)
    if not os.path.isdir(base):
        return f"ERROR: {directory} is not a directory"
    needle = term.lower()
    hits = [os.path.relpath(p, repo) for p in _walk(base) if needle in os.path.basename(p).lower()]
    return "\n".join(hits[:MAX_HITS]) if hits else f"No files matching '{term}' in {directory}"


def _as_import(p: str, source_dir: str) -> str:
    rel = os.path.relpath(p, source_dir)
    return rel if rel.startswith(".") else "./" + rel


def relative_path_lookup(repo: str, source_path: str, path: str, threshold: Optional[float] = None) -> str:
    threshold = 0.6 if threshold is None else float(threshold)
    source_dir = os.path.dirname(_abs(repo, source_path))
    target = os.path.normpath(os.path.join(source_dir, path))
    if os.path.exists(target):
        return _as_import(target, source_dir)

    # imports often drop the extension
    candidates = []
    for p in _walk(os.path.abspath(repo)):
        candidates.append(p)
        stem = os.path.splitext(p)[0]
        if stem == target:
            return _as_import(p, source_dir)

    stems = {os.path.splitext(p)[0]: p for p in candidates}
    matches = difflib.get_close_matches(target, list(stems), n=1, cutoff=threshold)
    if not matches:
        return f"ERROR: no path similar to {path} found from {source_path}"
    return _as_import(stems[matches[0]], source_dir)
