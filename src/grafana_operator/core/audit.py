from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from grafana_operator.core.types import ObjectKey, ResourceKind


@dataclass
class AuditLogger:
    """
    JSON line audit log of remote side effects.

    Every remote creation or adoption appends one line, including whether the
    id made it into status. Lines with recorded false are remote objects the
    store does not know about and are the input for a manual or scripted sweep.
    """

    path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(self, event: dict[str, Any]) -> None:
        payload = dict(event)
        payload["ts_unix"] = int(time.time())
        line = json.dumps(payload, sort_keys=True)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def remote_object(
        self,
        kind: ResourceKind,
        key: ObjectKey,
        remote_id: int,
        *,
        adopted: bool,
        recorded: bool,
    ) -> None:
        self.log(
            {
                "event": "remote_adopted" if adopted else "remote_created",
                "kind": kind.value,
                "key": str(key),
                "remote_id": remote_id,
                "recorded": recorded,
            }
        )

    def read(self) -> list[dict[str, Any]]:
        """Return all audit entries, oldest first."""
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def unrecorded(self) -> list[dict[str, Any]]:
        """Entries for remote objects whose id was never written to status."""
        return [entry for entry in self.read() if not entry.get("recorded", True)]
