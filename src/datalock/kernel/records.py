"""Record classification for the upstream JSONL stream (pure logic).

Each line is classified into one tagged variant:

- ``Member``: pinned artifact
- ``SkippedEntry``: artifact excluded upstream (``_skipped: true``)
- ``RejectedLine``: record that cannot be pinned (missing hash, path or size,
  duplicate path)

Parse failures and unsupported schema tags abort immediately. Everything
else is accumulated so that ``finish()`` can refuse with one report that
lists every offending record, not just the first.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from datalock.codes import ACCEPTED_RECORD_VERSIONS
from datalock.kernel import refusal
from datalock.kernel.hash_utils import CanonicalDecodeError, decode_canonical
from datalock.kernel.lockfile import FingerprintResult, Member, RecordWarning, SkippedEntry
from datalock.kernel.refusal import RefusalEnvelope


logger = logging.getLogger(__name__)

UNKNOWN_PATH = "<unknown>"
EMPTY_LINE_ERROR = "line is empty; expected one JSON value per line"


class InputRejected(Exception):
    """The whole run is refused; ``envelope`` is the structured refusal."""

    def __init__(self, envelope: RefusalEnvelope):
        self.envelope = envelope
        self.code = envelope.refusal.code
        super().__init__(f"[{envelope.code}] {envelope.refusal.message}")


class RejectReason(str, Enum):
    MISSING_HASH = "missing bytes_hash"
    MISSING_PATH = "missing path/relative_path"
    MISSING_SIZE = "missing size"
    DUPLICATE_PATH = "duplicate path"


@dataclass(frozen=True)
class RejectedLine:
    line_number: int
    reason: RejectReason
    path: str = UNKNOWN_PATH

    def describe(self) -> str:
        if self.reason is RejectReason.DUPLICATE_PATH:
            return f"{self.reason.value}: {self.path}"
        return self.reason.value


ClassifiedRecord = Union[Member, SkippedEntry, RejectedLine]


@dataclass
class Classification:
    """Accepted records of a fully consumed stream, ready for the builder."""
    members: List[Member]
    skipped: List[SkippedEntry]
    tool_versions: Dict[str, str]
    record_count: int


def merge_tool_versions(merged: Dict[str, str], incoming: Any) -> Dict[str, str]:
    """Merge one record's ``tool_versions`` into ``merged`` in place.

    First writer wins: a tool already present keeps its first-seen version.
    Non-object maps and non-string versions are ignored.
    """
    if not isinstance(incoming, Mapping):
        return merged
    for tool, version in incoming.items():
        if isinstance(version, str) and tool not in merged:
            merged[tool] = version
    return merged


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


def _string_field(value: Mapping[str, Any], key: str) -> Optional[str]:
    field_value = value.get(key)
    return field_value if isinstance(field_value, str) else None


def extract_record_path(value: Mapping[str, Any]) -> Optional[str]:
    """``relative_path`` wins over ``path``; blank strings count as absent."""
    for key in ("relative_path", "path"):
        candidate = _string_field(value, key)
        if candidate is not None and candidate.strip():
            return normalize_path(candidate)
    return None


def _is_unsigned_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _render_detail_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def extract_warnings(value: Mapping[str, Any]) -> List[RecordWarning]:
    raw = value.get("_warnings")
    if not isinstance(raw, list):
        return []
    warnings = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        detail = item.get("detail")
        warnings.append(RecordWarning(
            tool=_string_field(item, "tool") or "",
            code=_string_field(item, "code") or "",
            message=_string_field(item, "message") or "",
            detail={
                str(k): _render_detail_value(v)
                for k, v in detail.items()
            } if isinstance(detail, dict) else {},
        ))
    return warnings


def extract_fingerprint(value: Mapping[str, Any]) -> Optional[FingerprintResult]:
    """Nested match result, or None when absent or incomplete."""
    raw = value.get("fingerprint")
    if not isinstance(raw, dict):
        return None
    fingerprint_id = _string_field(raw, "fingerprint_id")
    fingerprint_version = _string_field(raw, "fingerprint_version")
    matched = raw.get("matched")
    if fingerprint_id is None or fingerprint_version is None or not isinstance(matched, bool):
        return None
    return FingerprintResult(
        fingerprint_id=fingerprint_id,
        fingerprint_version=fingerprint_version,
        matched=matched,
        content_hash=_string_field(raw, "content_hash"),
    )


class RecordClassifier:
    """Consumes one record at a time; holds only the accumulators."""

    def __init__(self) -> None:
        self.members: List[Member] = []
        self.skipped: List[SkippedEntry] = []
        self.rejected: List[RejectedLine] = []
        self.tool_versions: Dict[str, str] = {}
        self.record_count = 0
        self._seen_paths: Set[str] = set()

    def classify_line(self, line_number: int, line: Union[bytes, str]) -> ClassifiedRecord:
        """Decode one raw JSONL line and classify it.

        Raw bytes are decoded here, so invalid UTF-8 is refused at its own line.

        Raises:
            InputRejected: blank line, malformed JSON or UTF-8, or unsupported version.
        """
        text = line.rstrip(b"\r\n" if isinstance(line, bytes) else "\r\n")
        if not text.strip():
            raise InputRejected(refusal.bad_input_parse(line_number, EMPTY_LINE_ERROR))
        try:
            value = decode_canonical(text)
        except CanonicalDecodeError as e:
            raise InputRejected(refusal.bad_input_parse(line_number, str(e))) from e
        return self.classify(line_number, value)

    def classify(self, line_number: int, value: Any) -> ClassifiedRecord:
        """Classify one decoded record and append it to the matching accumulator."""
        record = value if isinstance(value, dict) else {}
        version = _string_field(record, "version")
        if version not in ACCEPTED_RECORD_VERSIONS:
            raise InputRejected(refusal.bad_input_version(line_number, version))

        self.record_count += 1
        merge_tool_versions(self.tool_versions, record.get("tool_versions"))

        path = extract_record_path(record)
        if record.get("_skipped") is True:
            result = self._classify_skipped(line_number, record, path)
        else:
            result = self._classify_member(line_number, record, path)

        if isinstance(result, RejectedLine):
            self.rejected.append(result)
        elif isinstance(result, Member):
            self.members.append(result)
            self._seen_paths.add(result.path)
        else:
            self.skipped.append(result)
            self._seen_paths.add(result.path)
        return result

    def _classify_skipped(
        self, line_number: int, record: Mapping[str, Any], path: Optional[str]
    ) -> ClassifiedRecord:
        if path is None:
            return RejectedLine(line_number, RejectReason.MISSING_PATH)
        if path in self._seen_paths:
            return RejectedLine(line_number, RejectReason.DUPLICATE_PATH, path)
        return SkippedEntry(path=path, warnings=extract_warnings(record))

    def _classify_member(
        self, line_number: int, record: Mapping[str, Any], path: Optional[str]
    ) -> ClassifiedRecord:
        bytes_hash = _string_field(record, "bytes_hash")
        if bytes_hash is None or not bytes_hash.strip():
            return RejectedLine(line_number, RejectReason.MISSING_HASH, path or UNKNOWN_PATH)
        if path is None:
            return RejectedLine(line_number, RejectReason.MISSING_PATH)
        size = record.get("size")
        if not _is_unsigned_int(size):
            return RejectedLine(line_number, RejectReason.MISSING_SIZE, path)
        if path in self._seen_paths:
            return RejectedLine(line_number, RejectReason.DUPLICATE_PATH, path)
        return Member(
            path=path,
            bytes_hash=bytes_hash,
            size=size,
            fingerprint=extract_fingerprint(record),
        )

    def finish(self) -> Classification:
        """End-of-stream decision: refuse, or hand the accumulators to the builder.

        Raises:
            InputRejected: empty stream, missing hashes, or another rejected line.
        """
        if self.record_count == 0:
            raise InputRejected(refusal.empty())

        missing_hash = [r for r in self.rejected if r.reason is RejectReason.MISSING_HASH]
        if missing_hash:
            raise InputRejected(
                refusal.missing_hash(len(missing_hash), [r.path for r in missing_hash])
            )
        if self.rejected:
            first = self.rejected[0]
            raise InputRejected(refusal.bad_input_parse(first.line_number, first.describe()))

        logger.debug(
            "classified %d records: %d members, %d skipped",
            self.record_count, len(self.members), len(self.skipped),
        )
        return Classification(
            members=list(self.members),
            skipped=list(self.skipped),
            tool_versions=dict(self.tool_versions),
            record_count=self.record_count,
        )


def classify_lines(lines: Iterable[Union[bytes, str]]) -> Classification:
    """Classify a whole JSONL stream, one line at a time (line numbers are 1-based)."""
    classifier = RecordClassifier()
    for line_number, line in enumerate(lines, start=1):
        classifier.classify_line(line_number, line)
    return classifier.finish()


def classify_values(values: Iterable[Tuple[int, Any]]) -> Classification:
    """Classify already-decoded ``(line_number, value)`` pairs."""
    classifier = RecordClassifier()
    for line_number, value in values:
        classifier.classify(line_number, value)
    return classifier.finish()
