"""Refusal envelopes for build and verify runs.

A refusal is a structured terminal state, not free text: the code carries the
meaning, ``detail`` carries machine-readable context, and ``next_command``
always suggests a recovery action.

Shape::

    {
      "version": "lock.v0" | "lock-verify.v0",
      "outcome": "REFUSAL",
      "refusal": {"code": "...", "message": "...", "detail": {...}, "next_command": "..."}
    }
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict

from datalock.codes import (
    LOCK_VERSION,
    VERIFY_VERSION,
    Outcome,
    RefusalCode,
    VerifyRefusalCode,
)
from datalock.kernel.hash_utils import encode_canonical


MAX_SAMPLE_PATHS = 5

NEXT_PIPELINE = "vacuum <path> | hash | lock build"
NEXT_CHECK_UPSTREAM = "inspect the upstream record stream, then rerun: vacuum <path> | hash | lock build"
NEXT_REBUILD = "lock build <manifest.jsonl> > <name>.lock.json"
NEXT_CHECK_ROOT = "lock verify <lockfile> --root <existing directory>"
NEXT_CHECK_PATH = "check the lockfile path and permissions, then rerun lock verify"


class Refusal(BaseModel):
    code: Union[RefusalCode, VerifyRefusalCode]
    message: str
    detail: Dict[str, Any]
    next_command: str

    model_config = ConfigDict(frozen=True)


class RefusalEnvelope(BaseModel):
    version: str
    outcome: Outcome = Outcome.REFUSAL
    refusal: Refusal

    model_config = ConfigDict(frozen=True)

    @property
    def code(self) -> str:
        return self.refusal.code.value

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def to_bytes(self) -> bytes:
        """Canonical bytes (sorted keys, compact, no trailing newline)."""
        return encode_canonical(self.to_document())


def _build(code: RefusalCode, message: str, detail: Dict[str, Any], next_command: str) -> RefusalEnvelope:
    return RefusalEnvelope(
        version=LOCK_VERSION,
        refusal=Refusal(code=code, message=message, detail=detail, next_command=next_command),
    )


def _verify(code: VerifyRefusalCode, message: str, detail: Dict[str, Any], next_command: str) -> RefusalEnvelope:
    return RefusalEnvelope(
        version=VERIFY_VERSION,
        refusal=Refusal(code=code, message=message, detail=detail, next_command=next_command),
    )


# ---------------------------------------------------------------------------
# Build refusals
# ---------------------------------------------------------------------------

def empty() -> RefusalEnvelope:
    """E_EMPTY: no input records at all."""
    return _build(RefusalCode.EMPTY, "no input records, run vacuum first", {}, NEXT_PIPELINE)


def bad_input_parse(line: int, error: str) -> RefusalEnvelope:
    """E_BAD_INPUT: a line that is not one JSON value, or a structurally unusable record."""
    return _build(
        RefusalCode.BAD_INPUT,
        f"invalid JSONL at line {line}, check upstream tool output",
        {"line": line, "error": error},
        NEXT_CHECK_UPSTREAM,
    )


def bad_input_version(line: int, version: Optional[str]) -> RefusalEnvelope:
    """E_BAD_INPUT: absent or unrecognized record schema tag."""
    shown = version if version is not None else "<missing>"
    return _build(
        RefusalCode.BAD_INPUT,
        f'unknown record version "{shown}" at line {line}, check upstream tool output',
        {"line": line, "version": shown},
        NEXT_CHECK_UPSTREAM,
    )


def missing_hash(count: int, paths: Sequence[str]) -> RefusalEnvelope:
    """E_MISSING_HASH: non-skipped records without ``bytes_hash``.

    Only the first MAX_SAMPLE_PATHS paths are carried in the detail.
    """
    noun = "record lacks" if count == 1 else "records lack"
    return _build(
        RefusalCode.MISSING_HASH,
        f"{count} {noun} bytes_hash, run hash first",
        {"count": count, "sample_paths": list(paths[:MAX_SAMPLE_PATHS])},
        NEXT_PIPELINE,
    )


# ---------------------------------------------------------------------------
# Verify refusals
# ---------------------------------------------------------------------------

def lockfile_io(path: Union[str, Path], error: str) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.IO,
        f"cannot read lockfile: {error}",
        {"path": str(path), "error": error},
        NEXT_CHECK_PATH,
    )


def lockfile_parse(error: str, line: Optional[int] = None, column: Optional[int] = None) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        f"malformed lockfile JSON: {error}",
        {"error": error, "line": line, "column": column},
        NEXT_REBUILD,
    )


def lockfile_missing_fields(missing: List[str]) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        "lockfile missing required fields",
        {"missing_fields": list(missing)},
        NEXT_REBUILD,
    )


def lockfile_wrong_type(field: str, expected: str) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        f"lockfile field {field} must be {expected}",
        {"field": field, "expected": expected},
        NEXT_REBUILD,
    )


def lockfile_count_mismatch(field: str, recorded: Any, actual: int) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        f"lockfile {field} is {recorded} but the list holds {actual} entries",
        {"field": field, "recorded": recorded, "actual": actual},
        NEXT_REBUILD,
    )


def lockfile_absolute_path(member_index: int, member_path: str) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        f"member path is absolute: {member_path}",
        {"member_index": member_index, "member_path": member_path},
        NEXT_REBUILD,
    )


def lockfile_traversal(member_index: int, member_path: str) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.BAD_LOCKFILE,
        f"member path contains traversal: {member_path}",
        {"member_index": member_index, "member_path": member_path},
        NEXT_REBUILD,
    )


def unsupported_version(version: Any) -> RefusalEnvelope:
    shown = version if isinstance(version, str) else str(version)
    return _verify(
        VerifyRefusalCode.UNSUPPORTED_VERSION,
        f"unsupported lockfile version: {shown}",
        {"version": shown},
        NEXT_REBUILD,
    )


def root_not_found(root: Union[str, Path]) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.ROOT_NOT_FOUND,
        f"root directory not found: {root}",
        {"root": str(root)},
        NEXT_CHECK_ROOT,
    )


def unknown_algorithm(member_path: str, algorithm: str) -> RefusalEnvelope:
    return _verify(
        VerifyRefusalCode.UNKNOWN_ALGORITHM,
        f"unrecognized hash algorithm: {algorithm}",
        {"member_path": member_path, "algorithm": algorithm},
        NEXT_REBUILD,
    )
