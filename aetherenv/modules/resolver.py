# aetherenv/modules/resolver.py

from __future__ import annotations
from collections import deque
from typing import Callable, Iterable, Iterator, List, Optional, Tuple

from aetherenv.modules import logger as _logger
from aetherenv.modules.pkgname import strip_constraint, is_sentinel


def walk(seeds: Iterable[str],
         depends_of: Callable[[str], Iterable[str]]) -> Iterator[Tuple[str, str]]:
    """
    Breadth-first walk over the dependency graph.

    Yields ``(raw_token, name)`` for every raw token the first time it is
    dequeued. Visited tokens are compared as raw strings, so ``foo`` and
    ``foo>=2`` are both expanded; collapsing them is up to the caller.
    """
    frontier = deque(seeds)
    visited = set()
    while frontier:
        current = frontier.popleft()
        if current in visited:
            continue
        yield current, strip_constraint(current)
        visited.add(current)
        for dep in depends_of(current):
            if not is_sentinel(dep):
                frontier.append(dep)


def iter_closure(seeds: Iterable[str],
                 depends_of: Callable[[str], Iterable[str]]) -> Iterator[str]:
    """Lazy transitive closure of ``seeds``, in discovery order."""
    for _, name in walk(seeds, depends_of):
        yield name


class DependencyResolver:
    """
    Transitive dependency closure on top of a PackageDatabase.
    """

    def __init__(self, database, logger: Optional[_logger.Logger] = None):
        self.database = database
        self.log = logger or _logger.Logger("resolver")

    def _depends_of(self, token: str) -> List[str]:
        deps = self.database.depends_of(token)
        self.log.debug(f"{token} -> {', '.join(deps) if deps else '(none)'}")
        return deps

    def walk(self, seeds: Iterable[str]) -> Iterator[Tuple[str, str]]:
        return walk(seeds, self._depends_of)

    def iter_closure(self, seeds: Iterable[str]) -> Iterator[str]:
        return iter_closure(seeds, self._depends_of)

    def resolve(self, seeds: Iterable[str]) -> List[str]:
        """Closure in discovery order; names may repeat across raw tokens."""
        seeds = list(seeds)
        self.log.info(f"Resolving dependencies of {', '.join(seeds) or '(nothing)'}")
        names = list(self.iter_closure(seeds))
        self.log.info(f"{len(names)} dependencies resolved")
        return names

    def resolve_unique(self, seeds: Iterable[str]) -> List[str]:
        """Closure sorted with duplicates removed."""
        return sorted(set(self.resolve(seeds)))
