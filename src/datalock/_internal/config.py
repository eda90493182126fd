"""Environment-driven settings."""

import logging
import os
from pathlib import Path


LEDGER_ENV_VAR = "EPISTEMIC_WITNESS"
LOG_LEVEL_ENV_VAR = "DATALOCK_LOG_LEVEL"

DEFAULT_LEDGER_DIR = ".epistemic"
DEFAULT_LEDGER_NAME = "witness.jsonl"
DEFAULT_LOG_LEVEL = logging.WARNING


def _home_dir() -> Path:
    try:
        return Path.home()
    except RuntimeError:
        return Path(".")


def resolve_ledger_path() -> Path:
    """``$EPISTEMIC_WITNESS`` when set and not blank, else ``~/.epistemic/witness.jsonl``."""
    raw = os.getenv(LEDGER_ENV_VAR)
    if raw and raw.strip():
        return Path(raw)
    return _home_dir() / DEFAULT_LEDGER_DIR / DEFAULT_LEDGER_NAME


def log_level_from_env() -> int:
    raw = os.getenv(LOG_LEVEL_ENV_VAR)
    if not raw:
        return DEFAULT_LOG_LEVEL
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else DEFAULT_LOG_LEVEL
