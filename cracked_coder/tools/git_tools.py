from __future__ import annotations
import subprocess
from typing import Optional

"""
Tool: git_diff
Description: Diff between two commits, lock files excluded.
Args: {"fromCommit": "HEAD~1", "toCommit": "HEAD"}

Tool: git_pr_diff
Description: Diff of what compareBranch adds on top of baseBranch, lock files excluded.
Args: {"baseBranch": "main", "compareBranch": "feature"}
"""


def _run(repo: str, args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True)


def _exclusions(lock_files: Optional[list[str]]) -> list[str]:
    out = []
    for name in lock_files or []:
        # root-level and nested copies
        out += [f":(exclude){name}", f":(exclude)**/{name}"]
    return out


def _diff(repo: str, spec: str, lock_files: Optional[list[str]]) -> str:
    p = _run(repo, ["diff", spec, "--", ".", *_exclusions(lock_files)])
    if p.returncode != 0:
        return f"ERROR: git diff failed: {p.stderr.strip()}"
    return p.stdout or "No changes found."


def git_diff(repo: str, from_commit: str, to_commit: str, lock_files: Optional[list[str]] = None) -> str:
    return _diff(repo, f"{from_commit}..{to_commit}", lock_files)


def git_pr_diff(repo: str, base_branch: str, compare_branch: str,
                lock_files: Optional[list[str]] = None) -> str:
    return _diff(repo, f"{base_branch}...{compare_branch}", lock_files)
