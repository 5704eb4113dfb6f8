from __future__ import annotations
import re
from typing import Iterable, Optional, Union

from .blueprints import action_tags, parameter_tags

_ANSI_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")


def _tag_re(name: str) -> re.Pattern:
    n = re.escape(name)
    return re.compile(rf"<{n}>(.*?)</{n}>", re.DOTALL)


def extract_tags(text: str, name: str) -> list[str]:
    """All values of <name>...</name>, stripped, in document order."""
    if not text:
        return []
    return [m.strip() for m in _tag_re(name).findall(text)]


def extract_tag(text: str, name: str) -> Optional[Union[str, list[str]]]:
    """None when absent, a string for one match, a list for several."""
    values = extract_tags(text, name)
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


def extract_all_tags_with_content(text: str, name: str) -> list[str]:
    """Whole <name>...</name> blocks, tags included."""
    if not text:
        return []
    n = re.escape(name)
    return re.findall(rf"<{n}>.*?</{n}>", text, re.DOTALL)


def count_tag(text: str, name: str) -> tuple[int, int]:
    return text.count(f"<{name}>"), text.count(f"</{name}>")


def validate_structure(text: str,
                       actions: Optional[Iterable[str]] = None,
                       parameters: Optional[Iterable[str]] = None) -> str:
    """Return "" when every known tag is balanced, else a diagnostic for the first imbalance."""
    if not text:
        return ""
    names = list(actions if actions is not None else action_tags())
    names += list(parameters if parameters is not None else parameter_tags())
    for name in names:
        opening, closing = count_tag(text, name)
        if opening == closing:
            continue
        if opening > closing:
            return f"We need to use proper tag structure, try again. Missing closing tag for <{name}>."
        return f"We need to use proper tag structure, try again. Missing opening tag for </{name}>."
    return ""


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")
