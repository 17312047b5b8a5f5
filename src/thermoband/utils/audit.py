from __future__ import annotations

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional
import json
import threading
import time


@dataclass
class AuditRecord:
    """Single audit log record for a device-binding change."""

    timestamp: float
    actor: str
    action: str
    resource: str
    details: Dict[str, Any]


class NDJSONAuditLogger:
    """Append-only NDJSON audit logger for lifecycle transitions."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        line = json.dumps(asdict(record)) + "\n"
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def read_all(self) -> list[AuditRecord]:
        if not self.path.exists():
            return []
        records = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    records.append(AuditRecord(**json.loads(line)))
        return records


def make_audit_record(
    actor: Optional[str],
    action: str,
    resource: str,
    details: Optional[Dict[str, Any]] = None,
) -> AuditRecord:
    """Build an AuditRecord stamped with the current time.

    `actor` is the credential subject (hospital account) performing the change.
    """

    return AuditRecord(
        timestamp=time.time(),
        actor=actor or "unknown",
        action=action,
        resource=resource,
        details=details or {},
    )
