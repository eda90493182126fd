"""datalock: self-verifying lockfiles for dataset artifacts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("dataset-lock")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
# Note: run_build and run_verify live in datalock.api; datalock.cli is the shell
from datalock.api import run_build, run_verify, RunResult
from datalock.codes import Outcome, RefusalCode, VerifyRefusalCode
from datalock.kernel.lockfile import Lockfile
from datalock.kernel.verify import VerifyReport
from datalock.kernel.witness import WitnessLedger, WitnessFilters, WitnessRecord

__all__ = [
    "__version__",
    "run_build",
    "run_verify",
    "RunResult",
    "Outcome",
    "RefusalCode",
    "VerifyRefusalCode",
    "Lockfile",
    "VerifyReport",
    "WitnessLedger",
    "WitnessFilters",
    "WitnessRecord",
]
