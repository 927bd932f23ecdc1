# aetherenv/modules/database.py
"""
Package database backends.

The resolver and the provider lookup only need three questions answered:

 - depends_of(token): direct dependency tokens of a package
 - is_known(name):    is the package locally known (installed)
 - search(terms):     candidate package names matching every term

PacmanDatabase asks pacman; StaticDatabase answers from a graph file
(YAML or JSON), which is handy offline and in tests. PkgDirDatabase lives
in pkginfo.py.
"""

from __future__ import annotations
import os
import re
import json
from typing import Dict, Iterable, List, Optional, Any

import yaml

from aetherenv.modules import logger as _logger
from aetherenv.modules.config import config as _config
from aetherenv.modules.pkgname import bare_name, is_sentinel
from aetherenv.modules.runner import CommandRunner, RunnerError


class DatabaseError(Exception):
    pass


class GraphFileError(DatabaseError):
    pass


class PackageDatabase:
    """Interface shared by every backend."""

    def depends_of(self, token: str) -> List[str]:
        raise NotImplementedError

    def is_known(self, name: str) -> bool:
        raise NotImplementedError

    def search(self, terms: Iterable[str]) -> List[str]:
        raise NotImplementedError


# -----------------------
# pacman
# -----------------------
DEPENDS_FIELD = re.compile(r"^Depends On\s*:\s?(.*)$")
FIELD_SEPARATOR = re.compile(r"\s{2,}")


def parse_depends_field(info_output: str) -> List[str]:
    """
    Extract dependency tokens from ``pacman -Qi``/``-Si`` output.

    The field value is a list separated by two or more spaces and may wrap
    onto indented continuation lines. ``None`` yields an empty list.
    """
    collected = []
    in_field = False
    for line in info_output.splitlines():
        if in_field:
            if line[:1].isspace() and line.strip():
                collected.append(line.strip())
                continue
            break
        m = DEPENDS_FIELD.match(line)
        if m:
            in_field = True
            collected.append(m.group(1).strip())

    tokens = []
    for chunk in collected:
        for token in FIELD_SEPARATOR.split(chunk):
            token = token.strip()
            if token and not is_sentinel(token):
                tokens.append(token)
    return tokens


class PacmanDatabase(PackageDatabase):
    QUERY_FLAGS = {"local": "-Qi", "sync": "-Si"}

    def __init__(self, pacman: str = "pacman", query_mode: str = "local",
                 runner: Optional[CommandRunner] = None,
                 logger: Optional[_logger.Logger] = None):
        if query_mode not in self.QUERY_FLAGS:
            raise DatabaseError(f"Unknown query mode: {query_mode}")
        self.pacman = pacman
        self.query_mode = query_mode
        self.log = logger or _logger.Logger("database")
        self.runner = runner or CommandRunner(logger=self.log)

    def _query(self, args: List[str]):
        try:
            # LC_ALL=C keeps the "Depends On" label stable across locales
            return self.runner.run([self.pacman] + args, env={"LC_ALL": "C"},
                                   check=False, readonly=True)
        except RunnerError as e:
            raise DatabaseError(str(e)) from e

    def depends_of(self, token: str) -> List[str]:
        name = bare_name(token)
        res = self._query([self.QUERY_FLAGS[self.query_mode], name])
        if not res.ok():
            # unknown packages count as having no dependencies
            self.log.warning(f"No package information for '{name}': {res.stderr.strip()}")
            return []
        return parse_depends_field(res.stdout)

    def is_known(self, name: str) -> bool:
        return self._query(["-Qiq", bare_name(name)]).ok()

    def search(self, terms: Iterable[str]) -> List[str]:
        terms = [t for t in terms if t]
        if not terms:
            return []
        res = self._query(["-Ssq"] + terms)
        if not res.ok():
            self.log.debug(f"No search results for {terms}")
            return []
        return res.lines()


# -----------------------
# static graph file
# -----------------------
class StaticDatabase(PackageDatabase):
    """
    In-memory package graph.

    packages: {name: {"depends": [...], "provides": [...], "installed": bool}}
    """

    def __init__(self, packages: Optional[Dict[str, Dict[str, Any]]] = None):
        self.packages: Dict[str, Dict[str, Any]] = {}
        for name, entry in (packages or {}).items():
            self.add_package(name, **self._normalize_entry(name, entry))

    @staticmethod
    def _normalize_entry(name, entry) -> Dict[str, Any]:
        if entry is None:
            return {}
        if isinstance(entry, list):
            return {"depends": entry}
        if isinstance(entry, dict):
            unknown = set(entry) - {"depends", "provides", "installed"}
            if unknown:
                raise GraphFileError(f"Unknown fields for '{name}': {sorted(unknown)}")
            for field in ("depends", "provides"):
                if field in entry and not isinstance(entry[field], list):
                    raise GraphFileError(f"Field '{field}' of '{name}' must be a list")
            return dict(entry)
        raise GraphFileError(f"Invalid entry for '{name}': {entry!r}")

    def add_package(self, name: str, depends=None, provides=None, installed: bool = True):
        self.packages[name] = {
            "depends": [str(d) for d in (depends or [])],
            "provides": [str(p) for p in (provides or [])],
            "installed": bool(installed),
        }

    @classmethod
    def from_file(cls, path: str) -> "StaticDatabase":
        if not os.path.isfile(path):
            raise GraphFileError(f"Graph file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            try:
                if path.endswith(".json"):
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
            except (ValueError, yaml.YAMLError) as e:
                raise GraphFileError(f"Unable to parse graph file {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise GraphFileError(f"Graph file {path} must contain a mapping of packages")
        return cls({str(k): v for k, v in data.items()})

    def depends_of(self, token: str) -> List[str]:
        entry = self.packages.get(bare_name(token))
        if not entry:
            return []
        return [d for d in entry["depends"] if not is_sentinel(d)]

    def is_known(self, name: str) -> bool:
        entry = self.packages.get(bare_name(name))
        return bool(entry and entry["installed"])

    def search(self, terms: Iterable[str]) -> List[str]:
        patterns = [_compile_term(t) for t in terms if t]
        if not patterns:
            return []
        matches = []
        for name, entry in self.packages.items():
            candidates = [name] + [bare_name(p) for p in entry["provides"]]
            if all(any(p.search(c) for c in candidates) for p in patterns):
                matches.append(name)
        return matches


def _compile_term(term: str):
    # pacman treats search terms as regular expressions
    try:
        return re.compile(term)
    except re.error:
        return re.compile(re.escape(term))


def open_database(config=None, graph_file: Optional[str] = None,
                  pkg_dir: Optional[str] = None, runner: Optional[CommandRunner] = None):
    """Pick a backend from explicit overrides first, then the configuration."""
    cfg = config or _config
    if graph_file:
        return StaticDatabase.from_file(graph_file)
    if pkg_dir:
        from aetherenv.modules.pkginfo import PkgDirDatabase
        return PkgDirDatabase(pkg_dir)

    backend = cfg.get("database", "backend", fallback="pacman").lower()
    if backend == "pacman":
        return PacmanDatabase(
            pacman=cfg.get("database", "pacman", fallback="pacman"),
            query_mode=cfg.get("database", "query_mode", fallback="local"),
            runner=runner,
        )
    if backend == "static":
        path = cfg.get("database", "graph_file")
        if not path:
            raise DatabaseError("backend 'static' requires database.graph_file")
        return StaticDatabase.from_file(os.path.expanduser(path))
    if backend == "pkgdir":
        path = cfg.get("database", "pkg_dir")
        if not path:
            raise DatabaseError("backend 'pkgdir' requires database.pkg_dir")
        from aetherenv.modules.pkginfo import PkgDirDatabase
        return PkgDirDatabase(os.path.expanduser(path))
    raise DatabaseError(f"Unknown database backend: {backend}")
