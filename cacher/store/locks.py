from __future__ import annotations

import asyncio
from typing import Dict

from cacher.store.base import normalize_identity


class IdentityLocks:
    """One asyncio.Lock per caller; different callers never wait on each other."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, identity: str) -> asyncio.Lock:
        key = normalize_identity(identity)
        lk = self._locks.get(key)
        if lk is None:
            lk = asyncio.Lock()
            self._locks[key] = lk
        return lk
