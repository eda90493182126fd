"""Lockfile loading."""

from pathlib import Path
from typing import Union

from datalock.kernel import refusal
from datalock.kernel.verify import LockfileRejected


def read_lockfile_bytes(path: Union[str, Path]) -> bytes:
    """Read a lockfile as raw bytes (decoding is the verifier's job).

    Raises:
        LockfileRejected: E_IO when the file cannot be read.
    """
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise LockfileRejected(refusal.lockfile_io(path, e.strerror or str(e))) from e
