"""Lockfile models and the lockfile builder (pure logic)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from datalock._internal.clock import Clock, format_timestamp, utc_now
from datalock.codes import LOCK_VERSION, TOOL_NAME, Outcome
from datalock.kernel.hash_utils import encode_canonical
from datalock.kernel.self_hash import compute_self_hash


logger = logging.getLogger(__name__)


class FingerprintResult(BaseModel):
    """Nested match result carried through from the fingerprint stage."""
    fingerprint_id: str
    fingerprint_version: str
    matched: bool
    content_hash: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class RecordWarning(BaseModel):
    """One upstream warning attached to a skipped entry."""
    tool: str
    code: str
    message: str
    detail: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


class Member(BaseModel):
    """An artifact pinned by the lockfile."""
    path: str  # relative, forward-slash
    bytes_hash: str  # algorithm:hex
    size: int = Field(ge=0)
    fingerprint: Optional[FingerprintResult] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class SkippedEntry(BaseModel):
    """An artifact excluded upstream, recorded with the warnings that excluded it."""
    path: str
    warnings: List[RecordWarning] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid")


class LockMetadata(BaseModel):
    """Caller-supplied metadata, passed through verbatim."""
    dataset_id: Optional[str] = None
    as_of: Optional[str] = None
    note: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Lockfile(BaseModel):
    """lock.v0 document. Immutable once built."""
    version: str = LOCK_VERSION
    lock_hash: str
    dataset_id: Optional[str] = None
    as_of: Optional[str] = None
    note: Optional[str] = None
    created: str  # ISO 8601
    tool_versions: Dict[str, str]
    profiles: List[str] = Field(default_factory=list)  # reserved
    skipped: List[SkippedEntry]
    members: List[Member]
    skipped_count: int
    member_count: int

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _check_derived_fields(self) -> "Lockfile":
        if self.member_count != len(self.members):
            raise ValueError(
                f"member_count {self.member_count} != {len(self.members)} members"
            )
        if self.skipped_count != len(self.skipped):
            raise ValueError(
                f"skipped_count {self.skipped_count} != {len(self.skipped)} skipped entries"
            )
        member_paths = [m.path for m in self.members]
        skipped_paths = [s.path for s in self.skipped]
        if member_paths != sorted(set(member_paths)):
            raise ValueError("members must have unique paths in sorted order")
        if skipped_paths != sorted(set(skipped_paths)):
            raise ValueError("skipped entries must have unique paths in sorted order")
        overlap = set(member_paths) & set(skipped_paths)
        if overlap:
            raise ValueError(f"paths both pinned and skipped: {sorted(overlap)}")
        return self

    @property
    def outcome(self) -> Outcome:
        return Outcome.LOCK_PARTIAL if self.skipped else Outcome.LOCK_CREATED

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_bytes(self) -> bytes:
        """Canonical bytes as emitted (no trailing newline)."""
        return encode_canonical(self.to_document())

    def self_hash_valid(self) -> bool:
        return self.lock_hash == compute_self_hash(self.to_document())


def sort_by_path(entries: Iterable[Any]) -> List[Any]:
    """Order entries by path, comparing code points (never locale collation)."""
    return sorted(entries, key=lambda entry: entry.path)


def build_lockfile(
    members: Iterable[Member],
    skipped: Iterable[SkippedEntry],
    tool_versions: Mapping[str, str],
    metadata: Optional[LockMetadata] = None,
    *,
    tool_version: str,
    clock: Clock = utc_now,
) -> Lockfile:
    """Assemble classified records into a self-hashed lockfile.

    The run is authoritative about its own version, so ``tool_versions["lock"]``
    is always overwritten. ``created`` is the only field not derived from input.
    """
    metadata = metadata or LockMetadata()
    sorted_members = sort_by_path(members)
    sorted_skipped = sort_by_path(skipped)

    versions = dict(tool_versions)
    versions[TOOL_NAME] = tool_version

    draft = Lockfile(
        version=LOCK_VERSION,
        lock_hash="",
        dataset_id=metadata.dataset_id,
        as_of=metadata.as_of,
        note=metadata.note,
        created=format_timestamp(clock()),
        tool_versions=versions,
        profiles=[],
        skipped=sorted_skipped,
        members=sorted_members,
        skipped_count=len(sorted_skipped),
        member_count=len(sorted_members),
    )
    lock_hash = compute_self_hash(draft.to_document())
    logger.debug(
        "built lockfile: %d members, %d skipped, %s",
        draft.member_count, draft.skipped_count, lock_hash,
    )
    return draft.model_copy(update={"lock_hash": lock_hash})
