"""Self-hash computation for lock documents.

Algorithm:
1. Copy the document and set ``lock_hash`` to ``""`` (empty string).
2. Encode canonically (sorted keys, compact, no trailing newline).
3. SHA256 the canonical bytes.
4. Return ``"sha256:<hex>"``.

Building and verifying both call ``compute_self_hash``; there is no second
implementation of the procedure anywhere in the package.
"""

from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict

from datalock.kernel.hash_utils import SHA256, digest_bytes, encode_canonical


SELF_HASH_FIELD = "lock_hash"

# Fixed for lock.v0.
SELF_HASH_ALGORITHM = SHA256


class SelfHashResult(BaseModel):
    """Outcome of the Level 1 check."""

    stored: str
    computed: str
    valid: bool

    model_config = ConfigDict(frozen=True)


def blank_self_hash(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Shallow copy of ``document`` with the self-hash field set to ``""``."""
    blanked = dict(document)
    blanked[SELF_HASH_FIELD] = ""
    return blanked


def compute_self_hash(document: Mapping[str, Any]) -> str:
    """Compute the self-hash of a document tree (any stored value is ignored)."""
    return digest_bytes(encode_canonical(blank_self_hash(document)), SELF_HASH_ALGORITHM)


def verify_self_hash(document: Mapping[str, Any]) -> SelfHashResult:
    """Re-derive the self-hash of a decoded document and compare it to the stored one."""
    stored = document.get(SELF_HASH_FIELD, "")
    if not isinstance(stored, str):
        stored = ""
    computed = compute_self_hash(document)
    return SelfHashResult(stored=stored, computed=computed, valid=stored == computed)
