from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Optional

from cacher.runtime import CacherRuntime
from cacher.store.base import (
    InvalidIdentityError,
    PersistenceError,
    Slot,
    StoreInitError,
    normalize_identity,
)


def _checked_name(identity: str) -> str:
    name = normalize_identity(identity)
    if not name or name in (".", "..") or any(c in name for c in ("/", "\\", "\x00")):
        raise InvalidIdentityError(f"identity {identity!r} cannot be used as a file name")
    return name


class DiskCertStore:
    """
    One file per (identity, slot): <root>/<identity>.<slot>.

    Writes go to a fresh temp file in the same directory and are renamed onto
    the final name, so readers see either the previous content or the new one.
    """

    def __init__(self, root: Path, runtime: CacherRuntime):
        self.root = root
        self.runtime = runtime

    def path_for(self, identity: str, slot: Slot) -> Path:
        return self.root / f"{_checked_name(identity)}.{slot.value}"

    def init(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            token = secrets.token_hex(16)
            fd, probe = tempfile.mkstemp(dir=self.root, prefix=".probe-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(token)
                if Path(probe).read_text(encoding="utf-8") != token:
                    raise StoreInitError(f"{self.root}: probe file read back different content")
            finally:
                os.unlink(probe)
        except OSError as e:
            raise StoreInitError(f"{self.root} is not readable and writable: {e}") from e

    def get(self, identity: str, slot: Slot) -> Optional[str]:
        path = self.path_for(identity, slot)
        try:
            return path.read_bytes().decode("utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            self.runtime.log_event("STORE_READ_FAILED", severity="ERROR", path=str(path), detail=str(e))
            return None

    def upsert(self, identity: str, blob: str, slot: Slot) -> None:
        path = self.path_for(identity, slot)
        tmp: Optional[str] = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(blob.encode("utf-8"))
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
            raise PersistenceError(f"could not save {path.name}: {e}") from e
