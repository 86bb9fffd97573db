import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from config import settings

_configured: Dict[str, logging.Logger] = {}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"


def _resolve_level(level: Optional[int]) -> int:
    if level is not None:
        return level
    named = logging.getLevelName(settings.log_level.upper())
    return named if isinstance(named, int) else logging.INFO


def _file_handler(log_dir: Path, log_file_prefix: str) -> logging.FileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return logging.FileHandler(log_dir / f"{log_file_prefix}_{stamp}.log")


def setup_logger(logger_name: str, log_file_prefix: str, level: Optional[int] = None) -> logging.Logger:
    """
    Attach console (and, when LOG_ENABLE_FILE_LOGGING is set, timestamped file)
    handlers to ``logger_name``. Child loggers such as ``database.venue_model``
    propagate to it. Calling again with the same name returns the configured logger.
    """
    if logger_name in _configured:
        return _configured[logger_name]

    level = _resolve_level(level)
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.handlers.clear()

    handlers = [logging.StreamHandler()]
    if settings.logging.enable_file_logging:
        log_dir = settings.logging.log_output_directory
        try:
            handlers.append(_file_handler(log_dir, log_file_prefix))
        except OSError as e:
            logger.error(f"Could not open a log file for '{logger_name}' under {log_dir}: {e}", exc_info=True)

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _configured[logger_name] = logger
    logger.debug(f"Logger '{logger_name}' initialized with {len(handlers)} handler(s)")
    return logger
