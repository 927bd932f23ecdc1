# aetherenv/modules/pkgname.py
"""
Package-name helpers.

Dependency tokens reported by pacman look like ``glibc``, ``glibc>=2.38``,
``libfoo.so=1-64`` or ``sh``. Output names drop ordering constraints
(``<``, ``>``, ``<=``, ``>=``); lookups and searches use the bare name,
which also drops an exact ``=`` version.
"""

from typing import List

# pacman prints this in place of an empty dependency list
NONE_SENTINEL = "None"

CONSTRAINT_CHARS = "<>"
LOOKUP_CHARS = "<>="


def _cut(token: str, chars: str) -> str:
    for i, ch in enumerate(token):
        if ch in chars:
            return token[:i]
    return token


def strip_constraint(token: str) -> str:
    """Return the part of ``token`` before the first ``<`` or ``>``."""
    return _cut(token, CONSTRAINT_CHARS)


def bare_name(token: str) -> str:
    """Return the part of ``token`` before the first ``<``, ``>`` or ``=``."""
    return _cut(token, LOOKUP_CHARS)


def search_terms(name: str) -> List[str]:
    """Split a dependency name on spaces into bare search terms."""
    terms = []
    for part in name.split(" "):
        term = bare_name(part)
        if term:
            terms.append(term)
    return terms


def is_sentinel(token: str) -> bool:
    return token == NONE_SENTINEL
