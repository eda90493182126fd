"""Level 2 verification: lockfile members against a filesystem root."""

import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from datalock.codes import MemberFailureReason, MemberSkipReason, Outcome
from datalock.kernel.hash_utils import digest_file, split_digest


logger = logging.getLogger(__name__)


class MemberFailure(BaseModel):
    """A member whose bytes contradict the lockfile."""
    path: str
    reason: MemberFailureReason
    expected: Optional[str] = None
    actual: Optional[str] = None
    expected_size: Optional[int] = None
    actual_size: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class MemberSkip(BaseModel):
    """A member that could not be checked (neither confirmed nor refuted)."""
    path: str
    reason: MemberSkipReason
    detail: str

    model_config = ConfigDict(frozen=True)


class MembersResult(BaseModel):
    root: str
    checked: int
    verified: int
    failed: int
    skipped: int
    failures: List[MemberFailure] = Field(default_factory=list)
    skips: List[MemberSkip] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def _expected_size(member: Mapping[str, Any]) -> Optional[int]:
    size = member.get("size")
    if isinstance(size, int) and not isinstance(size, bool) and size >= 0:
        return size
    return None


def verify_members(document: Mapping[str, Any], root: Union[str, Path]) -> MembersResult:
    """Check each member of a validated lockfile document under ``root``.

    Per member, in order: existence (MISSING), stat (IO_ERROR skip), recorded
    size (SIZE_MISMATCH, digest not computed), streamed digest with the
    member's own algorithm (DIGEST_MISMATCH, or IO_ERROR skip on read failure).
    Members without a recorded size skip the size comparison.

    The document must have passed ``validate_lockfile_document``: paths are
    relative without traversal and digest algorithms are supported.
    """
    root_path = Path(root)
    members = document.get("members") or []
    failures: List[MemberFailure] = []
    skips: List[MemberSkip] = []
    verified = 0

    for member in members:
        member_path = member["path"]
        expected_hash = member["bytes_hash"]
        expected_size = _expected_size(member)
        full_path = root_path / member_path

        if not full_path.exists():
            failures.append(MemberFailure(
                path=member_path,
                reason=MemberFailureReason.MISSING,
                expected=expected_hash,
                expected_size=expected_size,
            ))
            continue

        try:
            actual_size = full_path.stat().st_size
        except OSError as e:
            skips.append(MemberSkip(path=member_path, reason=MemberSkipReason.IO_ERROR, detail=str(e)))
            continue

        if expected_size is not None and actual_size != expected_size:
            failures.append(MemberFailure(
                path=member_path,
                reason=MemberFailureReason.SIZE_MISMATCH,
                expected=expected_hash,
                expected_size=expected_size,
                actual_size=actual_size,
            ))
            continue

        algorithm, _ = split_digest(expected_hash)
        try:
            actual_hash = digest_file(full_path, algorithm)
        except OSError as e:
            skips.append(MemberSkip(path=member_path, reason=MemberSkipReason.IO_ERROR, detail=str(e)))
            continue

        if actual_hash == expected_hash:
            verified += 1
        else:
            failures.append(MemberFailure(
                path=member_path,
                reason=MemberFailureReason.DIGEST_MISMATCH,
                expected=expected_hash,
                actual=actual_hash,
                expected_size=expected_size,
                actual_size=actual_size,
            ))

    logger.debug(
        "verified members under %s: %d ok, %d failed, %d skipped",
        root_path, verified, len(failures), len(skips),
    )
    return MembersResult(
        root=str(root_path),
        checked=len(members),
        verified=verified,
        failed=len(failures),
        skipped=len(skips),
        failures=failures,
        skips=skips,
    )


def members_outcome(result: MembersResult, strict: bool = False) -> Outcome:
    """Failures dominate; skips alone are partial unless ``strict``."""
    if result.failed:
        return Outcome.VERIFY_FAILED
    if result.skipped:
        return Outcome.VERIFY_FAILED if strict else Outcome.VERIFY_PARTIAL
    return Outcome.VERIFY_OK
