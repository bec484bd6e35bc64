from __future__ import annotations

from typing import Dict, Optional

from cacher.store.base import Slot, normalize_identity


class MemoryCertStore:
    """Keeps everything in a dict; gone on restart."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[Slot, str]] = {}

    def init(self) -> None:
        return None

    def get(self, identity: str, slot: Slot) -> Optional[str]:
        rec = self._records.get(normalize_identity(identity))
        if rec is None:
            return None
        return rec.get(slot)

    def upsert(self, identity: str, blob: str, slot: Slot) -> None:
        rec = self._records.setdefault(normalize_identity(identity), {})
        rec[slot] = blob
