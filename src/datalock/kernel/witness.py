"""Witness ledger: an append-only, hash-chained JSONL record of runs.

Each line is one canonical JSON record. ``id`` is the blake3 digest of the
record's canonical encoding with ``id`` set to ``""``; ``prev`` is the ``id``
of the line before it (null for the first record). Other tools may share the
ledger, so unknown fields are preserved and malformed lines are skipped on read.

The ledger is an explicit handle. Nothing here reads the environment; the
path comes from ``datalock._internal.config.resolve_ledger_path``.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from datalock._internal.clock import Clock, format_timestamp, parse_timestamp, utc_now
from datalock.codes import TOOL_NAME, Outcome
from datalock.kernel.hash_utils import (
    BLAKE3,
    CanonicalDecodeError,
    CanonicalizationError,
    decode_canonical,
    digest_bytes,
    digest_file,
    encode_canonical,
)

if os.name == "nt":
    import msvcrt
else:
    import fcntl


logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 20
STDIN_LABEL = "stdin"

_TAIL_CHUNK = 4096


class WitnessAppendError(Exception):
    """Raised when a record cannot be appended to the ledger."""
    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class WitnessReadError(Exception):
    """Raised when the ledger exists but cannot be read."""
    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class WitnessInput(BaseModel):
    path: str
    hash: Optional[str] = None
    bytes: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class WitnessRecord(BaseModel):
    """One ledger line. Every field is optional so foreign records still load."""
    id: Optional[str] = None
    tool: Optional[str] = None
    version: Optional[str] = None
    binary_hash: Optional[str] = None
    inputs: Optional[List[Dict[str, Any]]] = None
    params: Optional[Dict[str, Any]] = None
    outcome: Optional[str] = None
    exit_code: Optional[int] = None
    output_hash: Optional[str] = None
    prev: Optional[str] = None
    ts: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class WitnessFilters(BaseModel):
    """Conjunctive filters; ``since``/``until`` are exclusive bounds."""
    tool: Optional[str] = None
    outcome: Optional[str] = None
    input_hash: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def matches(self, record: WitnessRecord) -> bool:
        if self.tool is not None and record.tool != self.tool:
            return False
        if self.outcome is not None and record.outcome != self.outcome:
            return False
        if self.input_hash is not None and not _has_input_hash(record, self.input_hash):
            return False
        if self.since is None and self.until is None:
            return True

        # A bound or record timestamp that does not parse matches nothing.
        record_ts = parse_timestamp(record.ts) if record.ts else None
        if record_ts is None:
            return False
        if self.since is not None:
            since_ts = parse_timestamp(self.since)
            if since_ts is None or record_ts <= since_ts:
                return False
        if self.until is not None:
            until_ts = parse_timestamp(self.until)
            if until_ts is None or record_ts >= until_ts:
                return False
        return True


def _has_input_hash(record: WitnessRecord, fragment: str) -> bool:
    for item in record.inputs or []:
        value = item.get("hash") if isinstance(item, dict) else None
        if isinstance(value, str) and fragment in value:
            return True
    return False


def compute_record_id(document: Dict[str, Any]) -> str:
    """blake3 of the canonical record with ``id`` blanked."""
    blanked = dict(document)
    blanked["id"] = ""
    return digest_bytes(encode_canonical(blanked), BLAKE3)


def _recency_key(indexed: Tuple[int, WitnessRecord]) -> Tuple[int, float, str, int]:
    index, record = indexed
    parsed = parse_timestamp(record.ts) if record.ts else None
    if parsed is not None:
        return (1, parsed.timestamp(), "", index)
    return (0, 0.0, record.ts or "", index)


def _lock(f) -> None:
    if os.name == "nt":
        f.seek(0)
        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK, 1)
    else:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)


def _unlock(f) -> None:
    if os.name == "nt":
        f.seek(0)
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def _last_non_empty_line(f) -> Optional[bytes]:
    """Scan backwards from the end; the ledger is never read whole for this."""
    f.seek(0, os.SEEK_END)
    pos = f.tell()
    buf = b""
    while pos > 0:
        step = min(_TAIL_CHUNK, pos)
        pos -= step
        f.seek(pos)
        buf = f.read(step) + buf
        stripped = buf.rstrip()
        if b"\n" in stripped:
            return stripped.rsplit(b"\n", 1)[1].strip() or None
    return buf.strip() or None


def _id_of_line(line: Optional[bytes]) -> Optional[str]:
    if line is None:
        return None
    try:
        value = decode_canonical(line)
    except CanonicalDecodeError:
        return None
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


class WitnessLedger:
    """Handle on one ledger file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def append(self, draft: WitnessRecord) -> WitnessRecord:
        """Chain and append one record under an exclusive OS lock.

        ``prev`` and ``id`` of the draft are replaced. The line is flushed and
        fsynced before the lock is released.

        Raises:
            WitnessAppendError: on any I/O or encoding failure.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a+b") as f:
                _lock(f)
                try:
                    prev = _id_of_line(_last_non_empty_line(f))
                    document = draft.to_document()
                    document["prev"] = prev
                    document["id"] = compute_record_id(document)
                    line = encode_canonical(document)
                    f.seek(0, os.SEEK_END)
                    f.write(line + b"\n")
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    _unlock(f)
        except (OSError, CanonicalizationError) as e:
            raise WitnessAppendError(self.path, str(e)) from e

        logger.debug("appended witness record %s to %s", document["id"], self.path)
        return WitnessRecord.model_validate(document)

    def read_documents(self) -> List[Dict[str, Any]]:
        """Every well-formed JSON object line, in file order, as decoded."""
        try:
            with open(self.path, "rb") as f:
                raw_lines = f.read().split(b"\n")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise WitnessReadError(self.path, str(e)) from e

        documents = []
        for raw in raw_lines:
            if not raw.strip():
                continue
            try:
                value = decode_canonical(raw)
            except CanonicalDecodeError:
                continue
            if isinstance(value, dict):
                documents.append(value)
        return documents

    def read(self) -> List[WitnessRecord]:
        """All records in file order. Missing ledger reads as empty.

        Raises:
            WitnessReadError: the ledger exists but cannot be read.
        """
        records = []
        for document in self.read_documents():
            try:
                records.append(WitnessRecord.model_validate(document))
            except ValidationError:
                continue
        return records

    def _matching(self, filters: Optional[WitnessFilters]) -> List[Tuple[int, WitnessRecord]]:
        filters = filters or WitnessFilters()
        return [(i, r) for i, r in enumerate(self.read()) if filters.matches(r)]

    def query(
        self,
        filters: Optional[WitnessFilters] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> List[WitnessRecord]:
        """Matching records, newest first, at most ``limit``."""
        matched = sorted(self._matching(filters), key=_recency_key, reverse=True)
        return [record for _, record in matched[:max(limit, 0)]]

    def last(self, filters: Optional[WitnessFilters] = None) -> Optional[WitnessRecord]:
        matched = self._matching(filters)
        if not matched:
            return None
        return max(matched, key=_recency_key)[1]

    def count(self, filters: Optional[WitnessFilters] = None) -> int:
        return len(self._matching(filters))

    def verify_chain(self) -> Optional[int]:
        """Index of the first record whose ``id`` or ``prev`` link is wrong, else None.

        Indices count well-formed records only; skipped lines are invisible.
        """
        prev: Optional[str] = None
        for i, document in enumerate(self.read_documents()):
            try:
                expected_id = compute_record_id(document)
            except CanonicalizationError:
                return i
            if document.get("id") != expected_id or document.get("prev") != prev:
                return i
            prev = document["id"]
        return None


def input_descriptor(path: Optional[Union[str, Path]]) -> WitnessInput:
    """Describe one run input. Unreadable files and stdin carry no digest."""
    if path is None or str(path) == "-":
        return WitnessInput(path=STDIN_LABEL)
    try:
        size = os.stat(path).st_size
        digest = digest_file(path, BLAKE3)
    except OSError:
        return WitnessInput(path=str(path))
    return WitnessInput(path=str(path), hash=digest, bytes=size)


def build_witness_record(
    outcome: Outcome,
    output: bytes,
    params: Dict[str, Any],
    inputs: List[WitnessInput],
    *,
    tool_version: str,
    clock: Clock = utc_now,
) -> WitnessRecord:
    """Draft record for one run; ``append`` fills in ``prev`` and ``id``."""
    return WitnessRecord(
        id="",
        tool=TOOL_NAME,
        version=tool_version,
        binary_hash=None,
        inputs=[i.model_dump(mode="json") for i in inputs],
        params=params,
        outcome=outcome.value,
        exit_code=outcome.exit_code,
        output_hash=digest_bytes(output, BLAKE3),
        prev=None,
        ts=format_timestamp(clock()),
    )
