# kindle_bot/config/logging_config.py

"""Per-run timestamped logging configuration for kindle_bot.

Each invocation creates a dedicated log file inside the logs directory,
named with the launch timestamp (e.g. ``logs/run_20260214_153045.log``).
All ``kindle_bot.*`` loggers route through this file handler so that
every module's output lands in the same per-run log.

Inside Lambda the console handler is lowered to INFO so that slot and
segment progress reaches CloudWatch; locally only warnings are echoed.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from kindle_bot.config.settings import Settings

# Reusable format strings --------------------------------------------------

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(module)s:%(funcName)s:%(lineno)d | "
    "%(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    logs_dir: Path | None = None,
    console_level: int = logging.WARNING,
) -> Path:
    """Initialise the root ``kindle_bot`` logger for the current run.

    Args:
        logs_dir: Directory for the per-run log file. Defaults to
            ``Settings.LOGS_DIR``.
        console_level: Minimum level echoed to stderr.

    Returns:
        The :class:`~pathlib.Path` to the log file created for this run.
    """
    logs_dir = logs_dir or Settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = logs_dir / f"run_{timestamp}.log"

    # --- Root project logger -----------------------------------------------
    root_logger = logging.getLogger("kindle_bot")
    root_logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers on repeated calls (e.g. warm Lambda)
    if root_logger.handlers:
        return log_file

    # --- File handler (DEBUG+) – captures everything -----------------------
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )

    # --- Console handler – only important messages ---------------------------
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info(
        "Logging initialised - log file: %s", log_file
    )

    return log_file
