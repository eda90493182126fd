"""Outcome tags, refusal codes and reason codes for datalock.

These constants prevent stringly-typed codes and keep the wire strings in one
place. Every terminal state of a run maps to exactly one Outcome.
"""

from enum import Enum


LOCK_VERSION = "lock.v0"
VERIFY_VERSION = "lock-verify.v0"

# Upstream record schema tags accepted by the classifier.
ACCEPTED_RECORD_VERSIONS = ("vacuum.v0", "hash.v0", "fingerprint.v0")

# Lockfile schema tags accepted by the verifier.
SUPPORTED_LOCK_VERSIONS = (LOCK_VERSION,)

TOOL_NAME = "lock"


class Outcome(str, Enum):
    """Domain outcome of a build or verify run."""

    LOCK_CREATED = "LOCK_CREATED"
    LOCK_PARTIAL = "LOCK_PARTIAL"
    VERIFY_OK = "VERIFY_OK"
    VERIFY_PARTIAL = "VERIFY_PARTIAL"
    VERIFY_FAILED = "VERIFY_FAILED"
    REFUSAL = "REFUSAL"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    Outcome.LOCK_CREATED: 0,
    Outcome.LOCK_PARTIAL: 1,
    Outcome.VERIFY_OK: 0,
    Outcome.VERIFY_PARTIAL: 1,
    Outcome.VERIFY_FAILED: 1,
    Outcome.REFUSAL: 2,
}


class RefusalCode(str, Enum):
    """Build refusals (input rejection)."""

    EMPTY = "E_EMPTY"
    BAD_INPUT = "E_BAD_INPUT"
    MISSING_HASH = "E_MISSING_HASH"


class VerifyRefusalCode(str, Enum):
    """Verify refusals (document rejection)."""

    IO = "E_IO"
    BAD_LOCKFILE = "E_BAD_LOCKFILE"
    UNSUPPORTED_VERSION = "E_UNSUPPORTED_VERSION"
    ROOT_NOT_FOUND = "E_ROOT_NOT_FOUND"
    UNKNOWN_ALGORITHM = "E_UNKNOWN_ALGORITHM"


class MemberFailureReason(str, Enum):
    """Integrity findings for a single member (failure bucket)."""

    MISSING = "MISSING"
    SIZE_MISMATCH = "SIZE_MISMATCH"
    DIGEST_MISMATCH = "DIGEST_MISMATCH"


class MemberSkipReason(str, Enum):
    """Members that neither confirm nor refute integrity (skip bucket)."""

    IO_ERROR = "IO_ERROR"
