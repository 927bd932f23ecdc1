# aetherenv/modules/providers.py
"""
Provider resolution: map every dependency name (possibly a virtual
package such as ``sh`` or ``libfoo.so``) to one concrete package.

A locally known package provides itself; otherwise the first search
result wins, in whatever order the database returns them.
"""

from __future__ import annotations
from typing import Callable, Iterable, List, Optional, Tuple

from aetherenv.modules import logger as _logger
from aetherenv.modules.pkgname import bare_name, search_terms


class ProviderResolver:
    def __init__(self, database, logger: Optional[_logger.Logger] = None):
        self.database = database
        self.log = logger or _logger.Logger("providers")

    def provider_for(self, name: str) -> Optional[str]:
        if self.database.is_known(name):
            return bare_name(name)
        terms = search_terms(name)
        candidates = self.database.search(terms)
        if not candidates:
            self.log.warning(f"No provider found for '{name}'")
            return None
        self.log.debug(f"{name} provided by {candidates[0]}")
        return candidates[0]

    def resolve_all(self, names: Iterable[str],
                    progress: Optional[Callable[[str, Optional[str]], None]] = None
                    ) -> Tuple[List[str], List[str]]:
        """
        Returns ``(providers, unresolved)``. Providers keep the order of
        ``names``; ``progress(name, provider)`` is called after each lookup.
        """
        providers = []
        unresolved = []
        for name in names:
            provider = self.provider_for(name)
            if provider is None:
                unresolved.append(name)
            else:
                providers.append(provider)
            if progress:
                progress(name, provider)
        return providers, unresolved
