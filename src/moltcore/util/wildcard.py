"""Glob-style wildcard matching for permission rules."""

import re
from functools import lru_cache

from ..core.global_paths import GlobalPath


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{escaped}$", re.DOTALL)


def match(text: str, pattern: str) -> bool:
    """Match ``text`` against ``pattern``.

    ``*`` matches any run of characters, path separators included, and ``?``
    matches exactly one character. Everything else is literal.
    """
    if pattern == "*":
        return True
    return _compile(pattern).match(text) is not None


def expand_home(pattern: str) -> str:
    """Expand a leading ``~`` or ``$HOME`` in a rule pattern."""
    home = GlobalPath.home()
    if pattern.startswith("~/"):
        return home + pattern[1:]
    if pattern == "~":
        return home
    if pattern.startswith("$HOME/"):
        return home + pattern[5:]
    if pattern == "$HOME":
        return home
    return pattern
