import logging
import os
from datetime import datetime
from pathlib import Path

_LOGGERS = {}


def _log_dir() -> Path:
    log_dir = Path(os.getenv("MINERELAY_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def get_logger(
    name: str,
    *,
    runtime: str = "minerelay",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.batch_queue, discord.client)
    - runtime: log file prefix (minerelay | discord | rcon)

    The log directory is resolved on first use so importing a module
    never touches the filesystem.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    logfile = _log_dir() / f"{runtime}-{timestamp}.log"

    file_handler = logging.FileHandler(logfile, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
