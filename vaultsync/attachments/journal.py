"""Append-only journal of sync operations.

Every archive, upload, rewrite and delete is recorded as one JSON line in
``{vault}/.vaultsync/sync-log.jsonl``. The journal is never consulted when
deciding what to sync; it exists so that a pass interrupted between upload
and rewrite still leaves a record of the remote URL it created.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

ARCHIVE = "archive"
UPLOAD = "upload"
REWRITE = "rewrite"
DELETE = "delete"


@dataclass
class JournalEntry:
    """Record of a sync operation."""

    op_id: str
    op_type: str  # ARCHIVE, UPLOAD, REWRITE or DELETE
    path: str
    status: str  # "success", "failed", "noop"
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "op_id": self.op_id,
            "op_type": self.op_type,
            "path": self.path,
            "status": self.status,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class SyncJournal:
    """Transaction log for sync operations, stored as JSONL."""

    def __init__(self, base_dir: Path, filename: str = "sync-log.jsonl"):
        """
        Args:
            base_dir: Directory holding the journal (e.g. ``{vault}/.vaultsync``)
            filename: Journal file name
        """
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / filename

    def record(
        self,
        op_type: str,
        path: str,
        status: str,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Append one operation to the journal.

        Write failures are logged and swallowed so a full disk never aborts
        a sync pass.

        Returns:
            Operation ID, or None if the entry could not be written
        """
        timestamp = datetime.now(timezone.utc)
        op_id = f"{int(timestamp.timestamp() * 1000)}_{hashlib.md5(path.encode()).hexdigest()[:8]}"
        entry = JournalEntry(
            op_id=op_id,
            op_type=op_type,
            path=path,
            status=status,
            error=error,
            timestamp=timestamp,
            metadata=metadata or {},
        )

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
        except OSError as e:
            logger.error(f"Failed to write to sync journal: {e}")
            return None

        logger.debug(f"Journaled {op_type} operation: {path} ({status})")
        return op_id

    def _read_all(self) -> list[JournalEntry]:
        if not self.log_file.exists():
            return []

        entries = []
        try:
            with open(self.log_file, "r") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                        entries.append(
                            JournalEntry(
                                op_id=data["op_id"],
                                op_type=data["op_type"],
                                path=data["path"],
                                status=data["status"],
                                error=data.get("error"),
                                timestamp=datetime.fromisoformat(data["timestamp"]),
                                metadata=data.get("metadata", {}),
                            )
                        )
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        logger.warning(f"Skipping invalid journal entry: {e}")
        except OSError as e:
            logger.error(f"Failed to read sync journal: {e}")
            return []

        return entries

    def _filter(self, predicate: Callable[[JournalEntry], bool]) -> list[JournalEntry]:
        return [entry for entry in self._read_all() if predicate(entry)]

    def get_recent_operations(self, limit: int = 50) -> list[JournalEntry]:
        """Return the last ``limit`` entries, newest first."""
        return self._read_all()[-limit:][::-1]

    def get_failed_operations(self) -> list[JournalEntry]:
        return self._filter(lambda entry: entry.status == "failed")

    def get_statistics(self) -> dict[str, Any]:
        """Count entries by type and status, plus failures in the last day."""
        entries = self._read_all()
        stats: dict[str, Any] = {
            "total_operations": len(entries),
            "by_type": {},
            "by_status": {},
            "recent_failures": 0,
        }
        for entry in entries:
            stats["by_type"][entry.op_type] = stats["by_type"].get(entry.op_type, 0) + 1
            stats["by_status"][entry.status] = stats["by_status"].get(entry.status, 0) + 1

        recent_threshold = datetime.now(timezone.utc) - timedelta(hours=24)
        stats["recent_failures"] = sum(
            1
            for entry in entries
            if entry.status == "failed" and entry.timestamp > recent_threshold
        )
        return stats

    def truncate(self, keep_days: int = 7) -> int:
        """Drop entries older than ``keep_days``; failures are kept.

        Returns:
            Number of entries removed
        """
        if not self.log_file.exists():
            return 0

        entries = self._read_all()
        cutoff = datetime.now(timezone.utc) - timedelta(days=keep_days)
        kept = [e for e in entries if e.status == "failed" or e.timestamp > cutoff]
        removed = len(entries) - len(kept)

        if removed > 0:
            try:
                with open(self.log_file, "w") as f:
                    for entry in kept:
                        f.write(json.dumps(entry.to_dict()) + "\n")
            except OSError as e:
                logger.error(f"Failed to truncate sync journal: {e}")
                return 0
            logger.info(f"Truncated sync journal: removed {removed} old entries")

        return removed
