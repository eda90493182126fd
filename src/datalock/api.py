"""Public API for datalock.

High-level functions that run a whole build or verify and return the exact
bytes to emit plus the domain outcome. The CLI is a thin shell over these.
Witness appends happen here, after the payload is final, and never change
the outcome.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from datalock import __version__
from datalock._internal.clock import Clock, utc_now
from datalock._internal.config import resolve_ledger_path
from datalock._internal.io.jsonl import is_stdin, open_lines
from datalock._internal.io.lockfile import read_lockfile_bytes
from datalock._internal.reporting.human import render_verify_report
from datalock.codes import Outcome
from datalock.kernel import refusal
from datalock.kernel.hash_utils import encode_canonical
from datalock.kernel.lockfile import Lockfile, LockMetadata, build_lockfile
from datalock.kernel.records import Classification, InputRejected, RecordClassifier
from datalock.kernel.refusal import RefusalEnvelope
from datalock.kernel.verify import LockfileRejected, VerifyReport, verify_lockfile
from datalock.kernel.witness import (
    WitnessAppendError,
    WitnessInput,
    WitnessLedger,
    build_witness_record,
    input_descriptor,
)


logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike, Path]


class RunResult(BaseModel):
    """Outcome of one build or verify run."""
    outcome: Outcome
    payload: bytes  # exactly what goes to stdout
    document: Dict[str, Any]
    witness_error: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


def default_ledger() -> WitnessLedger:
    return WitnessLedger(resolve_ledger_path())


def _append_witness(
    ledger: WitnessLedger,
    outcome: Outcome,
    payload: bytes,
    params: Dict[str, Any],
    inputs: List[WitnessInput],
    clock: Clock,
) -> Optional[str]:
    """Append a run record; failures are logged and returned, never raised."""
    draft = build_witness_record(
        outcome, payload, params, inputs, tool_version=__version__, clock=clock
    )
    try:
        ledger.append(draft)
    except WitnessAppendError as e:
        logger.warning("witness append failed: %s", e)
        return str(e)
    return None


def classify_input(input_path: Optional[PathLike] = None) -> Classification:
    """Stream and classify the build input.

    Raises:
        InputRejected: unreadable input or any classification refusal.
    """
    classifier = RecordClassifier()
    try:
        with open_lines(input_path) as lines:
            for line_number, line in enumerate(lines, start=1):
                classifier.classify_line(line_number, line)
    except OSError as e:
        raise InputRejected(refusal.bad_input_parse(0, str(e))) from e
    return classifier.finish()


def build(
    input_path: Optional[PathLike] = None,
    metadata: Optional[LockMetadata] = None,
    clock: Clock = utc_now,
) -> Union[Lockfile, RefusalEnvelope]:
    """Build a lockfile from a JSONL stream, or the refusal that stops it."""
    try:
        classification = classify_input(input_path)
    except InputRejected as e:
        logger.debug("build refused: %s", e)
        return e.envelope
    return build_lockfile(
        classification.members,
        classification.skipped,
        classification.tool_versions,
        metadata,
        tool_version=__version__,
        clock=clock,
    )


def run_build(
    input_path: Optional[PathLike] = None,
    *,
    dataset_id: Optional[str] = None,
    as_of: Optional[str] = None,
    note: Optional[str] = None,
    witness: bool = True,
    ledger: Optional[WitnessLedger] = None,
    clock: Clock = utc_now,
) -> RunResult:
    """Run ``lock build`` end to end.

    Outcomes: LOCK_CREATED (exit 0), LOCK_PARTIAL (skips present, exit 1),
    REFUSAL (exit 2). The payload is the canonical lockfile or refusal.
    """
    metadata = LockMetadata(dataset_id=dataset_id, as_of=as_of, note=note)
    result = build(input_path, metadata, clock=clock)

    document = result.to_document()
    payload = encode_canonical(document)
    outcome = result.outcome

    witness_error = None
    if witness:
        params = {"dataset_id": dataset_id, "as_of": as_of, "note": note}
        witness_error = _append_witness(
            ledger or default_ledger(),
            outcome,
            payload,
            params,
            [input_descriptor(None if is_stdin(input_path) else input_path)],
            clock,
        )
    return RunResult(outcome=outcome, payload=payload, document=document, witness_error=witness_error)


def verify(
    lockfile_path: PathLike,
    root: Optional[PathLike] = None,
    strict: bool = False,
) -> Union[VerifyReport, RefusalEnvelope]:
    """Verify a lockfile on disk; a refusal is returned, not raised."""
    try:
        data = read_lockfile_bytes(lockfile_path)
        return verify_lockfile(
            data,
            str(lockfile_path),
            root=root,
            strict=strict,
            tool_version=__version__,
        )
    except LockfileRejected as e:
        logger.debug("verify refused: %s", e)
        return e.envelope


def render_verify(result: Union[VerifyReport, RefusalEnvelope], as_json: bool = True) -> bytes:
    """Refusals are always the canonical envelope; reports honor ``as_json``."""
    if as_json or isinstance(result, RefusalEnvelope):
        return encode_canonical(result.to_document())
    return render_verify_report(result).encode("utf-8")


def run_verify(
    lockfile_path: PathLike,
    *,
    root: Optional[PathLike] = None,
    strict: bool = False,
    as_json: bool = True,
    witness: bool = True,
    ledger: Optional[WitnessLedger] = None,
    clock: Clock = utc_now,
) -> RunResult:
    """Run ``lock verify`` end to end.

    Outcomes: VERIFY_OK (0), VERIFY_PARTIAL (1), VERIFY_FAILED (1), REFUSAL (2).
    ``as_json=False`` renders the human summary as the payload instead.
    """
    result = verify(lockfile_path, root=root, strict=strict)
    document = result.to_document()
    payload = render_verify(result, as_json=as_json)
    outcome = result.outcome

    witness_error = None
    if witness:
        params = {
            "subcommand": "verify",
            "root": None if root is None else str(root),
            "strict": strict,
        }
        witness_error = _append_witness(
            ledger or default_ledger(),
            outcome,
            payload,
            params,
            [input_descriptor(lockfile_path)],
            clock,
        )
    return RunResult(outcome=outcome, payload=payload, document=document, witness_error=witness_error)


__all__ = [
    "RunResult",
    "build",
    "verify",
    "run_build",
    "run_verify",
    "render_verify",
    "classify_input",
    "default_ledger",
]
