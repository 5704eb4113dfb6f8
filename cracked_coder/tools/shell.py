from __future__ import annotations
import subprocess

from ..tags import strip_ansi

"""
Tool: execute_command
Description: Run a shell command in the workspace root. Use for builds, tests, or type checks.
Args: {"command": "string", "timeout": 300}
Returns: "exit=<code>" followed by combined stdout/stderr with escape sequences removed.
"""

BANNED = [" rm -rf / ", " git push -f ", " :(){ ", " dd if=", " mkfs", " shred ", " srm "]

FAILURE_HINT = (
    "\nIf you're unsure why the command failed, read the files related to the failure "
    "before writing a fix. If the same fix keeps failing, try a different approach."
)


def run(repo: str, command: str, timeout: int = 300) -> str:
    lowered = f" {command.strip().lower()} "
    if any(b in lowered for b in BANNED):
        return "ERROR: command blocked by policy"
    try:
        proc = subprocess.run(
            command,
            cwd=repo,
            shell=True,
            capture_output=True,
            text=True,
            timeout=timeout,
            executable="/bin/bash",
        )
    except subprocess.TimeoutExpired as e:
        partial = strip_ansi((e.stdout or "") if isinstance(e.stdout, str) else "")
        return f"exit=timeout\nCommand timed out after {timeout}s\n{partial}"
    except FileNotFoundError as e:
        return f"ERROR: {e}: command not found"
    output = strip_ansi(proc.stdout + proc.stderr)
    if not output:
        output = f"Command completed with exit code {proc.returncode}"
    if proc.returncode != 0:
        output += FAILURE_HINT
    return f"exit={proc.returncode}\n{output}"
