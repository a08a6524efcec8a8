"""Transaction ledger toolkit for the recycling operation's admin dashboard.

Importing the package configures the shared ``log`` object used by every
module. Log output goes to ``.logs/recycle_ledger.log`` under the project root
unless ``RECYCLE_LEDGER_LOG_DIR`` points elsewhere; ``RECYCLE_LEDGER_LOG_LEVEL``
overrides the file handler's level.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("RECYCLE_LEDGER_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "recycle_ledger.log"
LOG_LEVEL = logging.getLevelName(os.environ.get("RECYCLE_LEDGER_LOG_LEVEL", "INFO").upper())


def _configure_logging() -> logging.Logger:
    """Attach a rotating ledger log file and a stderr handler for warnings."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = LOG_LEVEL if isinstance(LOG_LEVEL, int) else logging.INFO
    logger.setLevel(min(level, logging.WARNING))
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        ledger_file = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
        ledger_file.setLevel(level)
        ledger_file.setFormatter(formatter)
        logger.addHandler(ledger_file)
    except OSError as exc:
        print(f"Warning: ledger log disabled, cannot open '{LOG_FILE}': {exc}", file=sys.stderr)

    # CLI output shares stderr with warnings only; routine fetch logs stay in the file.
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger


log = _configure_logging()
log.debug("Ledger logging configured (file=%s)", LOG_FILE)
