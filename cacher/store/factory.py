from __future__ import annotations

from pathlib import Path

from cacher.runtime import CacherRuntime
from cacher.store.base import CertStore
from cacher.store.disk import DiskCertStore
from cacher.store.memory import MemoryCertStore

BACKENDS = ("memory", "disk")


def build_store(backend: str, store_dir: Path, runtime: CacherRuntime) -> CertStore:
    if backend == "memory":
        store: CertStore = MemoryCertStore()
    elif backend == "disk":
        store = DiskCertStore(store_dir, runtime)
    else:
        raise ValueError(f"STORE_BACKEND must be one of {BACKENDS}, got {backend!r}")
    store.init()
    return store
