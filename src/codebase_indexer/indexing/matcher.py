"""Glob include/exclude matching for index candidates.

Patterns use a restricted glob syntax:

- ``**`` matches any number of path segments, including zero
- ``*`` matches any run of characters except ``/``
- ``?`` matches exactly one character
- everything else is literal

Patterns shaped exactly like ``**/*.<ext>`` are treated as extension patterns
and only inspect the final path segment, so ``**/*.log`` never matches files
inside a directory that happens to be named ``app.log``.
"""

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable

from codebase_indexer.core.exceptions import InvalidPatternError

_EXTENSION_PATTERN = re.compile(r"^\*\*/\*\.(\w+)$")

BINARY_EXTENSIONS: frozenset[str] = frozenset(
    {
        # images
        ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".svg",
        # documents and archives
        ".pdf", ".zip", ".tar", ".gz", ".rar", ".7z",
        # executables and libraries
        ".exe", ".dll", ".so", ".dylib", ".bin",
        # jvm artifacts
        ".class", ".jar", ".war", ".ear",
        # databases
        ".db", ".sqlite", ".mdb",
        # media
        ".mp3", ".mp4", ".avi", ".mov", ".wav",
        # fonts
        ".ttf", ".woff", ".woff2", ".eot",
    }
)


def normalize_path(path: str | Path) -> str:
    """Normalize a path to forward slashes."""
    return str(path).replace("\\", "/")


def get_extension(path: str | Path) -> str:
    """Lower-cased suffix of the final segment including the dot, or ``""``."""
    return os.path.splitext(normalize_path(path).rsplit("/", 1)[-1])[1].lower()


def is_binary_file(path: str | Path) -> bool:
    """Whether the path has a known binary extension."""
    return get_extension(path) in BINARY_EXTENSIONS


def glob_to_regex(pattern: str) -> str:
    """Translate a glob pattern into an anchored regular expression."""
    parts: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        if pattern.startswith("**/", i):
            # zero or more leading segments
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append(".")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return "^" + "".join(parts) + "$"


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str] | str:
    """Compile a pattern, or return the suffix for extension patterns."""
    ext_match = _EXTENSION_PATTERN.match(pattern)
    if ext_match:
        return "." + ext_match.group(1)
    return re.compile(glob_to_regex(pattern))


def match_glob(path: str | Path, pattern: str) -> bool:
    """Check whether a path matches a single glob pattern.

    Args:
        path: Project-relative path, any separator style.
        pattern: Glob pattern.

    Returns:
        True if the path matches.
    """
    normalized = normalize_path(path)
    compiled = _compile(pattern)
    if isinstance(compiled, str):
        return normalized.rsplit("/", 1)[-1].endswith(compiled)
    return compiled.match(normalized) is not None


def matches_any(path: str | Path, patterns: Iterable[str]) -> bool:
    """Check whether a path matches at least one pattern."""
    normalized = normalize_path(path)
    return any(match_glob(normalized, pattern) for pattern in patterns)


@dataclass(frozen=True)
class MatchPatternSet:
    """Include and exclude glob lists governing index candidates.

    Attributes:
        include: Patterns of which at least one must match.
        exclude: Patterns of which none may match.
    """

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "include", tuple(self.include))
        object.__setattr__(self, "exclude", tuple(self.exclude))
        for pattern in (*self.include, *self.exclude):
            if not isinstance(pattern, str):
                raise InvalidPatternError(pattern, "pattern must be a string")
            if not pattern.strip():
                raise InvalidPatternError(pattern, "pattern must be non-empty")
            try:
                _compile(pattern)
            except re.error as e:
                raise InvalidPatternError(pattern, str(e)) from e

    @classmethod
    def from_lists(
        cls,
        include: Iterable[str],
        exclude: Iterable[str] | None = None,
    ) -> "MatchPatternSet":
        """Build a pattern set from plain lists."""
        return cls(include=tuple(include), exclude=tuple(exclude or ()))

    def matches(self, path: str | Path) -> bool:
        """Whether the path is included and not excluded."""
        normalized = normalize_path(path)
        if matches_any(normalized, self.exclude):
            return False
        return matches_any(normalized, self.include)


def should_index(
    file_path: Path,
    relative_path: str,
    patterns: MatchPatternSet,
    max_file_size: int | None = None,
) -> bool:
    """Decide whether a file is an index candidate.

    Binary extensions are always rejected, then the pattern set is applied to
    the project-relative path, then the size limit to the file on disk.

    Args:
        file_path: Absolute path of the file.
        relative_path: Project-relative path used for pattern matching.
        patterns: Include/exclude pattern set.
        max_file_size: Maximum size in bytes, or None for no limit.

    Returns:
        True if the file should be indexed.
    """
    if is_binary_file(relative_path):
        return False
    if not patterns.matches(relative_path):
        return False
    if max_file_size is None:
        return True
    try:
        return file_path.stat().st_size <= max_file_size
    except OSError:
        return False
