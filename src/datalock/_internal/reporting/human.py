"""Render verify reports and witness records for terminals (internal)."""

from typing import List

from datalock.codes import Outcome
from datalock.kernel.verify import VerifyReport
from datalock.kernel.witness import WitnessRecord


CHECK = "✓"
CROSS = "✗"
WARN = "⚠"

HASH_PREFIX_LEN = 15


def _render_ok(report: VerifyReport) -> str:
    prefix = report.lock_hash.stored[:HASH_PREFIX_LEN] or "?"
    line = f"{CHECK} {report.lockfile}: self-hash valid ({prefix}...)"
    if report.members is not None:
        line += f", {report.members.verified}/{report.members.checked} members verified"
    return line


def _render_failed(report: VerifyReport) -> str:
    if not report.lock_hash.valid:
        return "\n".join([
            f"{CROSS} {report.lockfile}: self-hash TAMPERED",
            f"  stored:   {report.lock_hash.stored}",
            f"  computed: {report.lock_hash.computed}",
        ])
    members = report.members
    if members is None:
        return f"{CROSS} {report.lockfile}: {report.outcome.value}"
    if not members.failed:
        # strict mode: skips alone failed the run
        lines = [f"{CROSS} {report.lockfile}: {members.skipped} of {members.checked} members unchecked (strict)"]
    else:
        lines = [
            f"{CROSS} {report.lockfile}: {members.failed} of {members.checked} members failed "
            f"({members.verified} verified)"
        ]
    lines.extend(f"  {f.reason.value}: {f.path}" for f in members.failures)
    lines.extend(f"  {s.reason.value}: {s.path} ({s.detail})" for s in members.skips)
    return "\n".join(lines)


def _render_partial(report: VerifyReport) -> str:
    members = report.members
    if members is None:
        return f"{WARN} {report.lockfile}: {report.outcome.value}"
    lines: List[str] = [f"{WARN} {report.lockfile}: {members.verified} verified, {members.skipped} skipped"]
    lines.extend(f"  {s.reason.value}: {s.path} ({s.detail})" for s in members.skips)
    return "\n".join(lines)


def render_verify_report(report: VerifyReport) -> str:
    """One summary line, then one indented line per failing or skipped member."""
    if report.outcome == Outcome.VERIFY_OK:
        return _render_ok(report)
    if report.outcome == Outcome.VERIFY_PARTIAL:
        return _render_partial(report)
    return _render_failed(report)


def render_witness_record(record: WitnessRecord) -> str:
    exit_code = "?" if record.exit_code is None else str(record.exit_code)
    return (
        f"{record.ts or '?'}  {record.tool or '?'} {record.version or '?'}  "
        f"{record.outcome or '?'} (exit {exit_code})"
    )
