from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int = "INFO", log_dir: str | None = None) -> logging.Logger:
    """
    Configure the `smartread` logger: console output always, plus a rotating
    file under `log_dir` when one is given. Safe to call more than once.
    """
    logger = logging.getLogger("smartread")
    logger.setLevel(level if isinstance(level, int) else str(level).upper())

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(h, "_smartread", False) for h in logger.handlers):
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        console._smartread = True  # type: ignore[attr-defined]
        logger.addHandler(console)

    if log_dir:
        log_path = Path(log_dir) / "smartread.log"
        if not any(
            isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", "") == str(log_path.resolve())
            for h in logger.handlers
        ):
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logging.captureWarnings(True)
    return logger
