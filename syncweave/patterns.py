"""Path pattern matching: shell globs, /regex/ patterns and literal substrings."""

from __future__ import annotations

import fnmatch
import re


def is_glob_pattern(pattern: str) -> bool:
    """A pattern containing '*' or '?' is treated as a shell glob."""
    return "*" in pattern or "?" in pattern


def is_regex_pattern(pattern: str) -> bool:
    """A pattern longer than two characters wrapped in slashes is a regex."""
    return len(pattern) > 2 and pattern.startswith("/") and pattern.endswith("/")


def _matches_regex(file_path: str, pattern: str) -> bool:
    try:
        return re.search(pattern[1:-1], file_path) is not None
    except re.error:
        return False


def matches_pattern(file_path: str, pattern: str) -> bool:
    """Match a path against a glob, a /regex/ or, failing both, a substring.

    Globs are case-sensitive and '*' also matches '/'. An invalid regex
    matches nothing.
    """
    if is_glob_pattern(pattern):
        return fnmatch.fnmatchcase(file_path, pattern)
    if is_regex_pattern(pattern):
        return _matches_regex(file_path, pattern)
    return pattern in file_path