"""Include/exclude glob filtering on virtual paths."""

import fnmatch
import re
import logging
from typing import Iterable, List, Optional, Pattern

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

def _compile(patterns: Optional[Iterable[str]], kind: str) -> List[Pattern]:
    compiled = []
    for pattern in patterns or []:
        if not isinstance(pattern, str) or not pattern.strip():
            raise ConfigurationError(f"Invalid {kind} pattern: {pattern!r}")
        try:
            compiled.append(re.compile(fnmatch.translate(pattern.strip()), re.IGNORECASE))
        except re.error as e:
            raise ConfigurationError(f"Invalid {kind} pattern {pattern!r}: {e}") from e
    return compiled

class PathMatcher:
    """Decides whether a virtual path ("/dir/file.txt") should be crawled.

    Patterns are shell globs matched case-insensitively against the whole virtual
    path, so "*.pdf" matches "/a/b/report.PDF". Excludes always win. Directories
    that are not excluded are always traversed, even when they do not match an
    include, so indexable descendants are still reached.
    """

    def __init__(self, includes: Optional[Iterable[str]] = None, excludes: Optional[Iterable[str]] = None):
        self.includes = list(includes or [])
        self.excludes = list(excludes or [])
        self._includes = _compile(self.includes, 'include')
        self._excludes = _compile(self.excludes, 'exclude')

    def is_excluded(self, name: str) -> bool:
        return any(p.match(name) for p in self._excludes)

    def is_included(self, name: str) -> bool:
        if not self._includes:
            return True
        return any(p.match(name) for p in self._includes)

    def is_indexable(self, name: str, is_directory: bool = False) -> bool:
        if self.is_excluded(name):
            logger.debug(f"{name} is excluded")
            return False
        if is_directory:
            return True
        return self.is_included(name)

def is_indexable(name: str, includes: Optional[Iterable[str]], excludes: Optional[Iterable[str]],
                 is_directory: bool = False) -> bool:
    """One-shot form of PathMatcher.is_indexable."""
    return PathMatcher(includes, excludes).is_indexable(name, is_directory)
