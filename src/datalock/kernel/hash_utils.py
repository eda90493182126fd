"""Canonical JSON codec and content hashing with explicit rules for stable output.

This module provides the single encode/decode pair and the digest helpers used
everywhere a byte-exact representation matters: lockfile self-hashes, witness
record identifiers, emitted output digests.

Key rules:
- Object keys sorted recursively (code point order, identical to UTF-8 byte order)
- Arrays preserve order (callers sort lists before encoding)
- Floats BANNED (hard validation error)
- Strings are NOT normalized; normalization would let a tampered string verify
- Non-JSON types forbidden
- Digests are always tagged: ``<algorithm>:<hex>``
"""

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import blake3


SHA256 = "sha256"
BLAKE3 = "blake3"

# sha256 addresses artifacts and self-hashes; blake3 identifies ledger records and output.
SUPPORTED_ALGORITHMS = (SHA256, BLAKE3)

FILE_CHUNK_SIZE = 64 * 1024


class CanonicalizationError(ValueError):
    """Raised when an object cannot be canonicalized."""


class CanonicalDecodeError(ValueError):
    """Raised when bytes cannot be decoded into a JSON document.

    ``lineno``/``colno`` are 1-based; ``pos`` is the 0-based character offset.
    They are None when the failure has no single location (duplicate keys).
    """

    def __init__(
        self,
        message: str,
        lineno: Optional[int] = None,
        colno: Optional[int] = None,
        pos: Optional[int] = None,
    ):
        self.message = message
        self.lineno = lineno
        self.colno = colno
        self.pos = pos
        if lineno is not None:
            super().__init__(f"{message}: line {lineno} column {colno} (char {pos})")
        else:
            super().__init__(message)


class UnknownAlgorithmError(ValueError):
    """Raised for a digest tag that is not in SUPPORTED_ALGORITHMS."""

    def __init__(self, algorithm: str):
        self.algorithm = algorithm
        super().__init__(f"unsupported algorithm: {algorithm}")


def _validate_json_type(obj: Any, path: str = "") -> None:
    """Validate that object contains only JSON-compatible types.

    Raises CanonicalizationError if non-JSON types are found.

    Note: None is a valid value and is always emitted as null. Optional
    fields of the document shapes are therefore present as null, never absent.
    """
    if obj is None:
        return
    elif isinstance(obj, bool):
        return
    elif isinstance(obj, int):
        return
    elif isinstance(obj, float):
        # BAN FLOATS - hard validation error
        raise CanonicalizationError(
            f"Floats are not allowed in canonical documents (at {path or '<root>'})"
        )
    elif isinstance(obj, str):
        return
    elif isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path or '<root>'}, got {type(key).__name__}"
                )
            _validate_json_type(value, f"{path}.{key}" if path else key)
    elif isinstance(obj, (list, tuple)):
        for i, item in enumerate(obj):
            _validate_json_type(item, f"{path}[{i}]" if path else f"[{i}]")
    else:
        raise CanonicalizationError(
            f"Non-JSON type at {path or '<root>'}: {type(obj).__name__}. "
            f"Only None, bool, int, str, dict, and list are allowed."
        )


def canonicalize_json(obj: Any) -> str:
    """Canonicalize a JSON-serializable object to its unique text form.

    Rules:
    - Object keys sorted recursively (all nested objects)
    - Arrays preserve order
    - Numbers: int allowed, floats BANNED (hard error)
    - Compact separators, no trailing newline, no ASCII escaping

    Args:
        obj: The object to canonicalize

    Returns:
        Canonical JSON string

    Raises:
        CanonicalizationError: If object contains floats, non-JSON types, or non-string keys
    """
    _validate_json_type(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def encode_canonical(obj: Any) -> bytes:
    """Encode a document to its canonical UTF-8 byte sequence.

    Raises:
        CanonicalizationError: as ``canonicalize_json``, or for strings holding
            lone surrogates (they have no UTF-8 encoding).
    """
    try:
        return canonicalize_json(obj).encode("utf-8")
    except UnicodeEncodeError as e:
        raise CanonicalizationError(f"string is not valid Unicode: {e.reason}") from e


def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise CanonicalDecodeError(f"duplicate object key {key!r}")
        result[key] = value
    return result


def _reject_constant(name: str) -> Any:
    raise CanonicalDecodeError(f"non-standard JSON constant {name}")


_SURROGATE = re.compile(r"[\ud800-\udfff]")


def _reject_surrogates(value: Any) -> None:
    """JSON escapes can spell lone surrogates; no UTF-8 document can hold them."""
    if isinstance(value, str):
        if _SURROGATE.search(value):
            raise CanonicalDecodeError("string contains a lone surrogate escape")
    elif isinstance(value, dict):
        for key, item in value.items():
            _reject_surrogates(key)
            _reject_surrogates(item)
    elif isinstance(value, list):
        for item in value:
            _reject_surrogates(item)


def decode_canonical(data: Union[bytes, str]) -> Any:
    """Decode JSON bytes (or text) into a generic document tree.

    Insignificant whitespace is accepted; it carries no structure and is never
    re-emitted by ``encode_canonical``.

    Raises:
        CanonicalDecodeError: with line/column/offset for syntax errors and
            invalid UTF-8, without a location for duplicate keys, NaN/Infinity, lone
            surrogate escapes and oversized integers.
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            prefix = data[: e.start]
            lineno = prefix.count(b"\n") + 1
            colno = e.start - (prefix.rfind(b"\n") + 1) + 1
            raise CanonicalDecodeError("invalid UTF-8", lineno, colno, e.start) from e
    else:
        text = data
    try:
        document = json.loads(
            text,
            object_pairs_hook=_reject_duplicate_keys,
            parse_constant=_reject_constant,
        )
    except json.JSONDecodeError as e:
        raise CanonicalDecodeError(e.msg, e.lineno, e.colno, e.pos) from e
    except CanonicalDecodeError:
        raise
    except ValueError as e:
        # e.g. integers past the interpreter's digit limit
        raise CanonicalDecodeError(str(e)) from e
    _reject_surrogates(document)
    return document


def _new_hasher(algorithm: str) -> Any:
    if algorithm == SHA256:
        return hashlib.sha256()
    if algorithm == BLAKE3:
        return blake3.blake3()
    raise UnknownAlgorithmError(algorithm)


def split_digest(tagged: str) -> Tuple[str, str]:
    """Split ``algorithm:hex`` into its parts.

    Raises:
        UnknownAlgorithmError: if the prefix is missing or not supported.
    """
    algorithm, sep, hex_digest = tagged.partition(":")
    if not sep or algorithm not in SUPPORTED_ALGORITHMS:
        raise UnknownAlgorithmError(algorithm if sep else tagged)
    return algorithm, hex_digest


def digest_bytes(data: bytes, algorithm: str = SHA256) -> str:
    """Digest a byte sequence.

    Returns:
        Tagged digest string, e.g. ``sha256:<64 hex chars>``
    """
    hasher = _new_hasher(algorithm)
    hasher.update(data)
    return f"{algorithm}:{hasher.hexdigest()}"


def digest_file(
    path: Union[str, Path],
    algorithm: str = SHA256,
    chunk_size: int = FILE_CHUNK_SIZE,
) -> str:
    """Stream-digest a file in bounded chunks.

    The file is never loaded whole. I/O errors propagate as ``OSError``.
    """
    hasher = _new_hasher(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return f"{algorithm}:{hasher.hexdigest()}"


def digest_canonical(obj: Any, algorithm: str = SHA256) -> str:
    """Digest the canonical encoding of a document."""
    return digest_bytes(encode_canonical(obj), algorithm)


