"""Loguru sinks for evolution runs: console plus a rotating run log."""

from datetime import datetime, timezone
from pathlib import Path
import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <7}</level> | "
    "<cyan>{module}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {module}:{line} | {message}"


def setup_logger(
    log_dir: str = "logs",
    level: str = "INFO",
    rotation: str = "50 MB",
    retention: str = "30 days",
) -> Path:
    """Replace loguru's default sink; returns the run log path.

    Generation lines are emitted at INFO and per-genome failures at DEBUG, so
    ``level="DEBUG"`` is what surfaces isolated genome errors.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_file = directory / f"topoevo_{stamp}.log"

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=sys.stderr.isatty(),
        diagnose=False,
    )
    logger.add(
        log_file,
        level=level,
        format=FILE_FORMAT,
        rotation=rotation,
        retention=retention,
        compression="zip",
        encoding="utf-8",
        diagnose=False,
    )
    logger.debug("[Logger] Sinks ready | level={}, file={}", level, log_file)
    return log_file
