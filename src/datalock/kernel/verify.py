"""Lockfile verification: document validation, Level 1 self-hash, Level 2 members."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from datalock.codes import SUPPORTED_LOCK_VERSIONS, TOOL_NAME, VERIFY_VERSION, Outcome
from datalock.kernel import refusal
from datalock.kernel.hash_utils import (
    CanonicalDecodeError,
    CanonicalizationError,
    UnknownAlgorithmError,
    decode_canonical,
    split_digest,
)
from datalock.kernel.refusal import RefusalEnvelope
from datalock.kernel.self_hash import SelfHashResult, verify_self_hash
from datalock.kernel.verify_members import MembersResult, members_outcome, verify_members


logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("version", "lock_hash", "members")

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")


class LockfileRejected(Exception):
    """Raised when a lockfile cannot be verified at all."""
    def __init__(self, envelope: RefusalEnvelope):
        self.envelope = envelope
        self.code = envelope.refusal.code
        super().__init__(f"[{envelope.code}] {envelope.refusal.message}")


class VerifyReport(BaseModel):
    """lock-verify.v0 document."""
    version: str = VERIFY_VERSION
    outcome: Outcome
    lockfile: str
    lock_hash: SelfHashResult
    members: Optional[MembersResult] = None
    tool_versions: Dict[str, str]

    model_config = ConfigDict(frozen=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def is_absolute_member_path(path: str) -> bool:
    return path.startswith(("/", "\\")) or bool(_DRIVE_LETTER.match(path))


def has_traversal(path: str) -> bool:
    return ".." in re.split(r"[/\\]", path)


def _check_members(members: List[Any]) -> None:
    for i, member in enumerate(members):
        if not isinstance(member, dict):
            raise LockfileRejected(refusal.lockfile_wrong_type(f"members[{i}]", "object"))
        path = member.get("path")
        if not isinstance(path, str) or not path:
            raise LockfileRejected(refusal.lockfile_wrong_type(f"members[{i}].path", "non-empty string"))
        if not isinstance(member.get("bytes_hash"), str):
            raise LockfileRejected(refusal.lockfile_wrong_type(f"members[{i}].bytes_hash", "string"))

        if is_absolute_member_path(path):
            raise LockfileRejected(refusal.lockfile_absolute_path(i, path))
        if has_traversal(path):
            raise LockfileRejected(refusal.lockfile_traversal(i, path))
        try:
            split_digest(member["bytes_hash"])
        except UnknownAlgorithmError as e:
            raise LockfileRejected(refusal.unknown_algorithm(path, e.algorithm)) from e


def _check_count(document: Dict[str, Any], count_field: str, list_field: str) -> None:
    if count_field not in document:
        return
    entries = document.get(list_field, [])
    if not isinstance(entries, list):
        raise LockfileRejected(refusal.lockfile_wrong_type(list_field, "array"))
    recorded = document[count_field]
    if isinstance(recorded, bool) or recorded != len(entries):
        raise LockfileRejected(refusal.lockfile_count_mismatch(count_field, recorded, len(entries)))


def validate_lockfile_document(data: Union[bytes, str]) -> Dict[str, Any]:
    """Decode and structurally validate lockfile bytes.

    Checks run in a fixed order and the first problem wins: JSON syntax,
    required fields, field types, version, member paths and digest
    algorithms, then recorded counts.

    Returns:
        The decoded document tree, untouched (Level 1 hashes it as decoded).

    Raises:
        LockfileRejected: with the matching verify refusal.
    """
    try:
        document = decode_canonical(data)
    except CanonicalDecodeError as e:
        raise LockfileRejected(refusal.lockfile_parse(e.message, e.lineno, e.colno)) from e

    if not isinstance(document, dict):
        raise LockfileRejected(refusal.lockfile_wrong_type("document", "object"))

    missing = [name for name in REQUIRED_FIELDS if name not in document]
    if missing:
        raise LockfileRejected(refusal.lockfile_missing_fields(missing))

    if not isinstance(document["lock_hash"], str):
        raise LockfileRejected(refusal.lockfile_wrong_type("lock_hash", "string"))
    if not isinstance(document["members"], list):
        raise LockfileRejected(refusal.lockfile_wrong_type("members", "array"))

    if document["version"] not in SUPPORTED_LOCK_VERSIONS:
        raise LockfileRejected(refusal.unsupported_version(document["version"]))

    _check_members(document["members"])
    _check_count(document, "member_count", "members")
    _check_count(document, "skipped_count", "skipped")
    return document


def verify_lockfile(
    data: Union[bytes, str],
    lockfile_label: str,
    root: Optional[Union[str, Path]] = None,
    strict: bool = False,
    *,
    tool_version: str,
) -> VerifyReport:
    """Verify lockfile bytes and report the outcome.

    Level 1 always runs. Level 2 runs only with a ``root`` and a valid
    self-hash; a tampered document is never used to judge files.

    Raises:
        LockfileRejected: document or root unusable (REFUSAL).
    """
    document = validate_lockfile_document(data)

    if root is not None and not Path(root).is_dir():
        raise LockfileRejected(refusal.root_not_found(root))

    try:
        lock_hash = verify_self_hash(document)
    except CanonicalizationError as e:
        raise LockfileRejected(refusal.lockfile_parse(str(e))) from e
    logger.debug("self-hash of %s: valid=%s", lockfile_label, lock_hash.valid)

    members: Optional[MembersResult] = None
    if not lock_hash.valid:
        outcome = Outcome.VERIFY_FAILED
    elif root is not None:
        members = verify_members(document, root)
        outcome = members_outcome(members, strict)
    else:
        outcome = Outcome.VERIFY_OK

    return VerifyReport(
        outcome=outcome,
        lockfile=lockfile_label,
        lock_hash=lock_hash,
        members=members,
        tool_versions={TOOL_NAME: tool_version},
    )
