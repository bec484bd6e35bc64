from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# below this the event log stops growing rather than filling the disk
MIN_FREE_BYTES = 50 * 1024 * 1024


def disk_has_room(dir_path: Path, min_free_bytes: int = MIN_FREE_BYTES) -> bool:
    try:
        st = os.statvfs(str(dir_path))
    except (OSError, AttributeError):
        return True
    return st.f_bavail * st.f_frsize >= min_free_bytes


@dataclass
class CacherRuntime:
    """Process-wide context: the name we serve under and the JSONL event log."""

    hostname: str
    events_log: Path
    local_seq: int = 0

    def next_seq(self) -> int:
        self.local_seq += 1
        return self.local_seq

    def log_event(self, event_type: str, severity: str = "INFO", **extra: Any) -> None:
        self.events_log.parent.mkdir(parents=True, exist_ok=True)
        if not disk_has_room(self.events_log.parent):
            return
        record = {
            "ts": time.time(),
            "node": self.hostname,
            "sequence_id": self.next_seq(),
            "event_type": event_type,
            "severity": severity,
            **extra,
        }
        with open(self.events_log, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
