"""Tests for structured document access."""

import json

import pytest
import yaml

from configflow.core.documents import (
    DocumentError,
    UnsupportedDocumentError,
    detect_format,
    get_path,
    read_document,
    set_path,
    write_bytes,
    write_document,
)
from configflow.models import DocumentFormat


class TestDetectFormat:
    def test_known_suffixes(self):
        assert detect_format("a.json") is DocumentFormat.JSON
        assert detect_format("a.YAML") is DocumentFormat.YAML
        assert detect_format("a.yml") is DocumentFormat.YAML

    def test_other_files_are_opaque(self):
        assert detect_format(".env") is DocumentFormat.OPAQUE
        assert detect_format("app.toml") is DocumentFormat.OPAQUE


class TestReadWrite:
    def test_json_round_trip(self, tmp_path):
        path = tmp_path / "app.json"
        path.write_text('{"db": {"pool": 10}}')
        doc = read_document(path)
        set_path(doc, "db.pool", 8)
        write_document(path, doc)
        assert json.loads(path.read_text()) == {"db": {"pool": 8}}

    def test_yaml_keeps_key_order(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text("zeta: 1\nalpha: 2\n")
        doc = read_document(path)
        doc["alpha"] = 3
        write_document(path, doc)
        assert path.read_text() == "zeta: 1\nalpha: 3\n"
        assert yaml.safe_load(path.read_text()) == {"zeta": 1, "alpha": 3}

    def test_empty_documents(self, tmp_path):
        (tmp_path / "a.json").write_text("")
        (tmp_path / "b.yml").write_text("")
        assert read_document(tmp_path / "a.json") == {}
        assert read_document(tmp_path / "b.yml") == {}

    def test_malformed(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{nope")
        with pytest.raises(DocumentError):
            read_document(path)

    def test_undecodable(self, tmp_path):
        path = tmp_path / "latin1.yaml"
        path.write_bytes(b"name: caf\xe9\n")
        with pytest.raises(DocumentError, match="Cannot decode"):
            read_document(path)

    def test_opaque_rejected(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text("A=1\n")
        with pytest.raises(UnsupportedDocumentError):
            read_document(path)
        with pytest.raises(UnsupportedDocumentError):
            write_document(path, {"A": 1})

    def test_write_bytes_replaces_and_cleans_up(self, tmp_path):
        path = tmp_path / "app.json"
        path.write_bytes(b"old")
        write_bytes(path, b"new")
        assert path.read_bytes() == b"new"
        assert [p.name for p in tmp_path.iterdir()] == ["app.json"]


class TestKeyPaths:
    def test_get_path(self):
        doc = {"a": {"b": {"c": 1}}}
        assert get_path(doc, "a.b.c") == 1
        assert get_path(doc, "a.x", default="d") == "d"
        assert get_path(doc, "a.b.c.d") is None

    def test_set_creates_intermediates(self):
        doc = {}
        set_path(doc, "a.b.c", 5)
        assert doc == {"a": {"b": {"c": 5}}}

    def test_set_refuses_scalar_parent(self):
        with pytest.raises(DocumentError):
            set_path({"a": 1}, "a.b", 2)

    def test_set_refuses_non_mapping_root(self):
        with pytest.raises(DocumentError):
            set_path([1, 2], "a", 2)

    def test_set_refuses_empty_segment(self):
        with pytest.raises(DocumentError):
            set_path({}, "a..b", 2)
