"""Pytest configuration for tests.

No sys.path hacks - tests import from the installed datalock package.
Every test gets its own witness ledger so nothing touches ~/.epistemic.
"""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from datalock.kernel.hash_utils import digest_bytes


FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_ledger(tmp_path, monkeypatch):
    """Point EPISTEMIC_WITNESS at a per-test ledger path."""
    ledger_path = tmp_path / "ledger" / "witness.jsonl"
    monkeypatch.setenv("EPISTEMIC_WITNESS", str(ledger_path))
    return ledger_path


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def dataset_root(tmp_path):
    """A small dataset directory: name -> bytes."""
    root = tmp_path / "dataset"
    files = {
        "a.csv": b"id,value\n1,10\n",
        "nested/b.csv": b"id,value\n2,20\n",
        "c.txt": b"plain text",
    }
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return root


@pytest.fixture
def hash_record():
    """Build a hash.v0 record for a file's content."""
    def _make(path: str, content: bytes, **extra) -> dict:
        record = {
            "version": "hash.v0",
            "path": path,
            "bytes_hash": digest_bytes(content),
            "size": len(content),
            "tool_versions": {"vacuum": "0.1.0", "hash": "0.1.0"},
        }
        record.update(extra)
        return record
    return _make


@pytest.fixture
def write_jsonl(tmp_path):
    """Write records (dicts or raw strings) as a JSONL file and return its path."""
    def _write(records, name: str = "manifest.jsonl") -> Path:
        path = tmp_path / name
        lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def manifest_for(dataset_root, hash_record, write_jsonl):
    """JSONL manifest describing every file under dataset_root."""
    def _manifest(name: str = "manifest.jsonl") -> Path:
        records = [
            hash_record(p.relative_to(dataset_root).as_posix(), p.read_bytes())
            for p in sorted(dataset_root.rglob("*"))
            if p.is_file()
        ]
        return write_jsonl(records, name)
    return _manifest
