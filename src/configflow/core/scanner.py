"""Configuration file discovery, parameter extraction and change watching."""

from __future__ import annotations

import hashlib
import logging
import os
import queue
import threading
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from watchfiles import Change, watch

from configflow.core.documents import DocumentError, detect_format, read_document
from configflow.models.enums import ChangeKind, DocumentFormat
from configflow.models.runtime import ConfigFile, ConfigParameter

logger = logging.getLogger("configflow.scanner")

CONFIG_SUFFIXES = frozenset(
    {".json", ".yaml", ".yml", ".toml", ".ini", ".conf", ".config", ".cfg", ".properties"}
)
CONFIG_NAME_HINTS = ("config", "settings", "configuration")
EXCLUDED_DIRS = frozenset(
    {
        ".git",
        "node_modules",
        "dist",
        "build",
        "logs",
        "tmp",
        ".configflow",
        "__pycache__",
        ".venv",
        ".next",
        ".nuxt",
    }
)

_CHANGE_KINDS = {
    Change.added: ChangeKind.ADDED,
    Change.modified: ChangeKind.MODIFIED,
    Change.deleted: ChangeKind.REMOVED,
}


def is_config_file(path: Path | str) -> bool:
    p = Path(path)
    name = p.name.lower()
    if name.startswith(".env"):
        return True
    if p.suffix.lower() in CONFIG_SUFFIXES:
        return True
    return any(hint in p.stem.lower() for hint in CONFIG_NAME_HINTS)


def is_excluded(path: Path | str, root: Path) -> bool:
    try:
        parts = Path(path).relative_to(root).parts[:-1]
    except ValueError:
        parts = Path(path).parts[:-1]
    return any(part in EXCLUDED_DIRS for part in parts)


def flatten(doc: Any, prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dotted_path, leaf_value)`` pairs. Lists are treated as leaves."""
    if not isinstance(doc, dict):
        if prefix:
            yield prefix, doc
        return
    for key, value in doc.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict) and value:
            yield from flatten(value, path)
        else:
            yield path, value


class ConfigScanner:
    """Walks a project tree for configuration files."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()

    def scan(self) -> list[ConfigFile]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            for name in sorted(filenames):
                if not is_config_file(name):
                    continue
                path = Path(dirpath) / name
                try:
                    st = path.stat()
                except OSError as exc:
                    logger.warning("Cannot stat %s: %s", path, exc)
                    continue
                found.append(
                    ConfigFile(
                        path=str(path),
                        format=detect_format(path),
                        size=st.st_size,
                        modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                    )
                )
        logger.debug("Found %d configuration files under %s", len(found), self.root)
        return found

    def extract_parameters(self, config_file: ConfigFile) -> list[ConfigParameter]:
        """Flatten a structured document into dotted-path parameters."""
        if config_file.format is DocumentFormat.OPAQUE:
            return []
        try:
            doc = read_document(config_file.path)
        except (OSError, UnicodeDecodeError, DocumentError) as exc:
            logger.warning("Could not parse %s: %s", config_file.path, exc)
            return []
        return [
            ConfigParameter(config_file=config_file.path, key_path=key, value=value)
            for key, value in flatten(doc)
        ]

    def all_parameters(self, files: list[ConfigFile] | None = None) -> list[ConfigParameter]:
        params = []
        for config_file in files if files is not None else self.scan():
            params.extend(self.extract_parameters(config_file))
        return params

    def fingerprint(self, files: list[ConfigFile] | None = None) -> str:
        """Hash of every config file's path, size and mtime."""
        h = hashlib.md5()
        for f in files if files is not None else self.scan():
            h.update(f"{f.path}:{f.size}:{f.modified_at.timestamp()}\n".encode())
        return h.hexdigest()


class ConfigWatcher:
    """Watches the project tree on a daemon thread and queues config changes.

    Consumers call ``drain()`` from the scheduler thread; the watcher thread
    only ever touches the queue.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self._events: queue.Queue[tuple[str, ChangeKind]] = queue.Queue()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _accept(self, change: Change, path: str) -> bool:
        return is_config_file(path) and not is_excluded(path, self.root)

    def start(self) -> None:
        if self._thread is not None:
            logger.info("Already watching %s", self.root)
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="configflow-watcher", daemon=True
        )
        self._thread.start()
        logger.info("Watching %s for configuration changes", self.root)

    def _run(self) -> None:
        try:
            for changes in watch(
                self.root, watch_filter=self._accept, stop_event=self._stop
            ):
                for change, path in changes:
                    self.push(path, _CHANGE_KINDS[change])
        except OSError:
            logger.exception("Watcher for %s stopped", self.root)

    def push(self, path: str, kind: ChangeKind) -> None:
        logger.debug("Config %s: %s", kind.value, path)
        self._events.put((path, kind))

    def drain(self) -> list[tuple[str, ChangeKind]]:
        events = []
        while True:
            try:
                events.append(self._events.get_nowait())
            except queue.Empty:
                return events

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Stopped watching %s", self.root)
