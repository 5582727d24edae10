"""Durable pre-change backups, one JSON record per backup id."""

from __future__ import annotations

import base64
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from configflow.core.documents import read_bytes, write_bytes
from configflow.models.runtime import (
    ConfigBackup,
    ConfigTarget,
    RealFile,
    parse_target,
    target_label,
)

logger = logging.getLogger("configflow.backups")

SUFFIX = ".backup"


class BackupStorageError(Exception):
    """The backup directory cannot be created or written."""


class BackupNotFoundError(KeyError):
    """No backup exists for the requested id."""


def _to_record(backup: ConfigBackup) -> dict:
    return {
        "id": backup.backup_id,
        "timestamp": backup.timestamp.isoformat(),
        "configFile": target_label(backup.target),
        "originalContent": base64.b64encode(backup.original_content).decode("ascii"),
        "reason": backup.reason,
        "suggestionId": backup.suggestion_id,
    }


def _from_record(d: dict) -> ConfigBackup:
    return ConfigBackup(
        backup_id=d["id"],
        timestamp=datetime.fromisoformat(d["timestamp"]),
        target=parse_target(d["configFile"]),
        original_content=base64.b64decode(d["originalContent"]),
        reason=d.get("reason", ""),
        suggestion_id=d.get("suggestionId"),
    )


class BackupStore:
    """Stores original file bytes under an id and restores them verbatim."""

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)
        self._index: dict[str, ConfigBackup] = {}
        self._opened = False

    def __enter__(self) -> BackupStore:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self._index.clear()
        self._opened = False

    @property
    def directory(self) -> Path:
        return self._dir

    def open(self) -> None:
        """Create the directory and load existing records."""
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            marker = self._dir / f".write-check-{uuid.uuid4().hex}"
            marker.write_bytes(b"")
            marker.unlink()
        except OSError as exc:
            raise BackupStorageError(f"Backup directory unusable: {self._dir}: {exc}") from exc

        for path in sorted(self._dir.glob(f"*{SUFFIX}")):
            try:
                backup = _from_record(json.loads(path.read_text("utf-8")))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning("Skipping unreadable backup %s: %s", path.name, exc)
                continue
            self._index[backup.backup_id] = backup
        self._opened = True
        logger.debug("Loaded %d backups from %s", len(self._index), self._dir)

    def _require_open(self) -> None:
        if not self._opened:
            raise BackupStorageError("Backup store is not open")

    def _path(self, backup_id: str) -> Path:
        return self._dir / f"{backup_id}{SUFFIX}"

    def create(
        self,
        target: ConfigTarget,
        reason: str,
        suggestion_id: str | None = None,
        now: datetime | None = None,
    ) -> ConfigBackup:
        """Capture the target's current bytes and persist them before returning."""
        self._require_open()
        content = read_bytes(target.path) if isinstance(target, RealFile) else b""
        backup = ConfigBackup(
            backup_id=f"backup_{uuid.uuid4().hex}",
            timestamp=now or datetime.now(timezone.utc),
            target=target,
            original_content=content,
            reason=reason,
            suggestion_id=suggestion_id,
        )
        write_bytes(self._path(backup.backup_id), json.dumps(_to_record(backup), indent=2).encode())
        self._index[backup.backup_id] = backup
        logger.info("Created backup %s for %s", backup.backup_id, target_label(target))
        return backup

    def get(self, backup_id: str) -> ConfigBackup:
        backup = self._index.get(backup_id)
        if backup is not None:
            return backup
        path = self._path(backup_id)
        if not path.is_file():
            raise BackupNotFoundError(backup_id)
        backup = _from_record(json.loads(path.read_text("utf-8")))
        self._index[backup_id] = backup
        return backup

    def restore(self, backup_id: str) -> ConfigBackup:
        """Write the backed-up bytes back to the target. Virtual targets are a no-op."""
        backup = self.get(backup_id)
        if isinstance(backup.target, RealFile):
            write_bytes(backup.target.path, backup.original_content)
            logger.info("Restored %s from %s", backup.target.path, backup_id)
        else:
            logger.info("Virtual rollback for %s", target_label(backup.target))
        return backup

    def purge_older_than(
        self,
        days: float,
        now: datetime | None = None,
        keep: set[str] | frozenset[str] = frozenset(),
    ) -> list[str]:
        """Delete backups older than ``days``, except ids in ``keep``."""
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        removed = []
        for backup_id, backup in list(self._index.items()):
            if backup.timestamp >= cutoff or backup_id in keep:
                continue
            try:
                self._path(backup_id).unlink(missing_ok=True)
            except OSError:
                logger.exception("Failed to delete backup %s", backup_id)
                continue
            del self._index[backup_id]
            removed.append(backup_id)
        if removed:
            logger.info("Purged %d old backups", len(removed))
        return removed

    def backups(self) -> list[ConfigBackup]:
        return sorted(self._index.values(), key=lambda b: b.timestamp)

    def __contains__(self, backup_id: object) -> bool:
        return backup_id in self._index
