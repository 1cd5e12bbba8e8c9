"""
Audit journal: append-only JSON lines, one record per business action.

Implements the engine's audit sink. Records are written after the action
commits, and a failed write is logged, never raised into the caller.
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("papertrade.audit")


def _serialize(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "__dict__") and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in vars(obj).items() if not k.startswith("_")}
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    return obj


class AuditJournal:
    """Append-only audit trail. Each line holds action, entity and before/after state."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout

    @property
    def path(self) -> Path:
        return self._path

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        before: dict | None = None,
        after: dict | None = None,
    ) -> None:
        entry = {
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "before": before,
            "after": after,
        }
        try:
            line = json.dumps(_serialize(entry)) + "\n"
            with open(self._path, "a") as f:
                f.write(line)
        except (OSError, TypeError, ValueError):
            logger.error("Audit write failed for %s %s %s", action, entity_type, entity_id, exc_info=True)
            return
        if self._echo:
            print(line.rstrip())

    def read(self) -> list[dict]:
        """All records in write order; empty when nothing has been written yet."""
        if not self._path.exists():
            return []
        with open(self._path) as f:
            return [json.loads(line) for line in f if line.strip()]
