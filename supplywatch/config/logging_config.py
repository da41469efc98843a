# supplywatch/config/logging_config.py

"""Per-run logging for the monitoring engine.

Every launch of the CLI or scheduler writes ``logs/run_<timestamp>.log``
holding DEBUG output from all ``supplywatch.*`` loggers (ingestor,
state machine, risk, policy, matcher, pipeline, scheduler, store and
the operator channel).  Only the newest ``LOG_RETENTION`` run files
are kept.  The console receives ``LOG_CONSOLE_LEVEL`` and above.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from supplywatch.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at DEBUG
_QUIET_LOGGERS = ("curl_cffi", "PIL")


def _prune_old_logs(directory: Path, keep: int) -> list[Path]:
    """Delete all but the newest *keep* run logs and return the removed paths."""
    if keep <= 0:
        return []
    runs = sorted(directory.glob("run_*.log"))
    stale = runs[:-keep]
    for path in stale:
        path.unlink(missing_ok=True)
    return stale


def setup_logging(
    logs_dir: Path | None = None,
    console_level: str | None = None,
) -> Path:
    """Attach file and console handlers to the ``supplywatch`` logger.

    Repeated calls in one process are no-ops apart from returning a
    fresh log path; handlers are only attached once.
    """
    directory = logs_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"run_{datetime.now():%Y%m%d_%H%M%S}.log"

    project_logger = logging.getLogger("supplywatch")
    project_logger.setLevel(logging.DEBUG)
    if project_logger.handlers:
        return log_file

    removed = _prune_old_logs(directory, Settings.LOG_RETENTION - 1)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))

    level_name = (console_level or Settings.LOG_CONSOLE_LEVEL).upper()
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.getLevelName(level_name))
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    project_logger.addHandler(file_handler)
    project_logger.addHandler(console_handler)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    project_logger.info(
        "Logging to %s (console %s, pruned %d old runs)",
        log_file,
        level_name,
        len(removed),
    )
    return log_file
