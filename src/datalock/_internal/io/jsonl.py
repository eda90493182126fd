"""Line sources for the build input."""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union


STDIN_MARKER = "-"


def is_stdin(path: Optional[Union[str, Path]]) -> bool:
    return path is None or str(path) == STDIN_MARKER


@contextmanager
def open_lines(path: Optional[Union[str, Path]] = None) -> Iterator[Iterator[bytes]]:
    """Yield an iterator over the input's raw lines, read lazily.

    ``None`` or ``"-"`` reads standard input. Lines are split on ``\\n`` only
    and keep their terminators; a bare ``\\r`` is JSON whitespace, not a line
    break. Decoding is left to the classifier so a bad byte is reported
    against its own line.
    """
    if is_stdin(path):
        yield iter(getattr(sys.stdin, "buffer", sys.stdin))
        return
    with open(path, "rb") as f:
        yield iter(f)
