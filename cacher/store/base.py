from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol


class Slot(str, Enum):
    CERT = "cert"
    KEY = "key"


class StoreError(Exception):
    pass


class StoreInitError(StoreError):
    """The backend cannot be used; raised at startup only."""


class PersistenceError(StoreError):
    """A single write failed. The caller reports it and carries on."""


class InvalidIdentityError(StoreError, ValueError):
    pass


def normalize_identity(identity: str) -> str:
    # tailnet FQDNs come back as "host.tailnet.ts.net."
    if identity.endswith("."):
        return identity[:-1]
    return identity


class CertStore(Protocol):
    def init(self) -> None: ...

    def get(self, identity: str, slot: Slot) -> Optional[str]: ...

    def upsert(self, identity: str, blob: str, slot: Slot) -> None: ...
