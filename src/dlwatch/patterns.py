"""Filename pattern matching and browser temp-file recognition."""

import logging
import os
import re
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Predicate = Callable[[str], bool]

# Chrome, Firefox, Safari, Edge, then generic
DEFAULT_TEMP_SUFFIXES = (
    ".crdownload",
    ".part",
    ".download",
    ".partial",
    ".tmp",
    ".temp",
)
DEFAULT_TEMP_PREFIXES = ("~", ".tmp_")

_GLOB_CHARS = ("*", "?", "[")


def is_glob(pattern: str) -> bool:
    """True if the pattern contains ``*``, ``?`` or ``[``."""
    return any(c in pattern for c in _GLOB_CHARS)


def is_regex(pattern: str) -> bool:
    """True iff the pattern is wrapped as ``/.../``."""
    return len(pattern) >= 3 and pattern.startswith("/") and pattern.endswith("/")


def glob_to_regex(pattern: str) -> str:
    """
    Convert a glob pattern to an anchored regular expression.

    ``*`` becomes ``.*`` and ``?`` becomes ``.``; bracket expressions are
    kept as written (a leading ``!`` negation becomes ``^``); every other
    character is escaped.

    Args:
        pattern: Glob pattern

    Returns:
        Regular expression source anchored at both ends
    """
    parts: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            parts.append(".*")
        elif c == "?":
            parts.append(".")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end
        else:
            parts.append(re.escape(c))
        i += 1
    return "^" + "".join(parts) + "$"


def _literal_prefix(pattern: str) -> str:
    for index, c in enumerate(pattern):
        if c in _GLOB_CHARS:
            return pattern[:index]
    return pattern


def _contains(needle: str) -> Predicate:
    return lambda filename: needle in filename


class PatternMatcher:
    """
    Compiles user filename patterns into total predicates.

    Patterns come in three flavours: exact names, globs and ``/regex/``.
    Glob and regex matching is case-insensitive. A pattern that fails to
    compile degrades to a substring check instead of raising, because
    predicates run on every filesystem event.
    """

    def __init__(
        self,
        temp_suffixes: Optional[Iterable[str]] = None,
        temp_prefixes: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the matcher.

        Args:
            temp_suffixes: Browser temp-file suffixes (default: Chrome, Firefox,
                Safari, Edge and generic temp extensions)
            temp_prefixes: Temp-file name prefixes
        """
        suffixes = DEFAULT_TEMP_SUFFIXES if temp_suffixes is None else temp_suffixes
        prefixes = DEFAULT_TEMP_PREFIXES if temp_prefixes is None else temp_prefixes
        # Longest first so ".partial" wins over any shorter overlapping suffix
        self.temp_suffixes = tuple(sorted((s.lower() for s in suffixes), key=len, reverse=True))
        self.temp_prefixes = tuple(p.lower() for p in prefixes)

    is_glob = staticmethod(is_glob)
    is_regex = staticmethod(is_regex)
    glob_to_regex = staticmethod(glob_to_regex)

    def compile(self, pattern: str) -> Predicate:
        """
        Build a filename predicate for a pattern.

        Args:
            pattern: Exact name, glob or ``/regex/``

        Returns:
            Function taking a bare filename and returning whether it matches
        """
        if is_regex(pattern):
            source = pattern[1:-1]
            try:
                compiled = re.compile(source, re.IGNORECASE)
            except re.error as e:
                logger.debug(f"Invalid regex pattern {pattern!r} ({e}); using substring match")
                return _contains(source)
            return lambda filename: compiled.fullmatch(filename) is not None

        if is_glob(pattern):
            try:
                compiled = re.compile(glob_to_regex(pattern), re.IGNORECASE)
            except re.error as e:
                logger.debug(f"Invalid glob pattern {pattern!r} ({e}); using substring match")
                return _contains(_literal_prefix(pattern))
            return lambda filename: compiled.fullmatch(filename) is not None

        return lambda filename: filename == pattern

    def matches(self, path: PathLike, pattern: str) -> bool:
        """Check the filename part of a path against a pattern."""
        return self.compile(pattern)(os.path.basename(os.fspath(path)))

    def is_browser_temp_file(self, path: PathLike) -> bool:
        """
        Check whether a path names an in-progress browser download.

        Args:
            path: File path or bare filename

        Returns:
            True if the filename carries a known temp suffix or prefix
        """
        name = os.path.basename(os.fspath(path)).lower()
        if not name:
            return False
        return name.endswith(self.temp_suffixes) or name.startswith(self.temp_prefixes)

    def resolve_final_name(self, path: PathLike) -> PathLike:
        """
        Strip a known temp suffix to get the name the finished file will have.

        Args:
            path: Temp file path (``report.pdf.crdownload``)

        Returns:
            Path without the suffix (``report.pdf``), of the same type as
            the argument; the argument itself if no suffix is recognized
        """
        text = os.fspath(path)
        name = os.path.basename(text).lower()
        for suffix in self.temp_suffixes:
            if name.endswith(suffix) and len(name) > len(suffix):
                stripped = text[:-len(suffix)]
                return Path(stripped) if isinstance(path, Path) else stripped
        return path

    def temp_siblings(self, path: Path) -> List[Path]:
        """Temp-file names a browser may use while writing ``path``."""
        return [path.with_name(path.name + suffix) for suffix in self.temp_suffixes]

    def browser_download_patterns(self, filename: str) -> List[str]:
        """
        Patterns a browser download of ``filename`` may show up under.

        Args:
            filename: Final filename

        Returns:
            The exact name, Chrome/Firefox/Safari temp names and a loose glob
        """
        return [
            filename,
            filename + ".crdownload",
            filename + ".part",
            filename + ".download",
            f"*{filename}*",
        ]
