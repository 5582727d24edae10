"""Read, modify and write structured configuration documents."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from configflow.models.enums import DocumentFormat

_FORMATS = {
    ".json": DocumentFormat.JSON,
    ".yaml": DocumentFormat.YAML,
    ".yml": DocumentFormat.YAML,
}


class DocumentError(Exception):
    """A configuration document could not be parsed or updated."""


class UnsupportedDocumentError(DocumentError):
    """The file format has no key-path addressing."""


def detect_format(path: Path | str) -> DocumentFormat:
    return _FORMATS.get(Path(path).suffix.lower(), DocumentFormat.OPAQUE)


def read_bytes(path: Path | str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def write_bytes(path: Path | str, data: bytes) -> None:
    """Replace a file's contents atomically."""
    target = Path(path)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        if target.exists():
            os.chmod(tmp, target.stat().st_mode & 0o7777)
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def read_document(path: Path | str) -> Any:
    fmt = detect_format(path)
    if fmt is DocumentFormat.OPAQUE:
        raise UnsupportedDocumentError(f"{path} is not a structured document")

    try:
        text = read_bytes(path).decode("utf-8")
        if fmt is DocumentFormat.JSON:
            return json.loads(text) if text.strip() else {}
        return yaml.safe_load(text) or {}
    except UnicodeDecodeError as exc:
        raise DocumentError(f"Cannot decode {path}: {exc}") from exc
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DocumentError(f"Cannot parse {path}: {exc}") from exc


def write_document(path: Path | str, doc: Any) -> None:
    fmt = detect_format(path)
    if fmt is DocumentFormat.JSON:
        text = json.dumps(doc, indent=2) + "\n"
    elif fmt is DocumentFormat.YAML:
        text = yaml.safe_dump(doc, sort_keys=False, default_flow_style=False)
    else:
        raise UnsupportedDocumentError(f"{path} is not a structured document")
    write_bytes(path, text.encode("utf-8"))


def get_path(doc: Any, dotted: str, default: Any = None) -> Any:
    node = doc
    for key in dotted.split("."):
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def set_path(doc: Any, dotted: str, value: Any) -> Any:
    """Set ``value`` at a dotted key path, creating intermediate mappings."""
    if not isinstance(doc, dict):
        raise DocumentError("Document root is not a mapping")
    keys = dotted.split(".")
    if not all(keys):
        raise DocumentError(f"Invalid key path: {dotted!r}")

    node = doc
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            if child is not None:
                raise DocumentError(f"Cannot descend into non-mapping at {key!r}")
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value
    return doc
