"""
Logging for the irrigation controller.

Every component logger writes to one daily-rotated controller log and echoes warnings to the
console. Both destinations can be adjusted from the environment:

- IRRIGATION_LOG_DIR: directory of controller_log.log (default: runtime/controller/logs)
- IRRIGATION_CONSOLE_LOG_LEVEL: console threshold, a logging level name (default: WARNING)
"""

import logging
import os
from logging.handlers import TimedRotatingFileHandler


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
LOG_DIR = os.environ.get("IRRIGATION_LOG_DIR", os.path.join(PROJECT_ROOT, "runtime", "controller", "logs"))
LOG_FILE = os.path.join(LOG_DIR, "controller_log.log")
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

KEEP_DAYS = 30


def console_level(environ=os.environ) -> int:
    """Console threshold from IRRIGATION_CONSOLE_LOG_LEVEL; unknown names fall back to WARNING."""
    name = str(environ.get("IRRIGATION_CONSOLE_LOG_LEVEL", "WARNING")).strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _build_handlers() -> tuple[logging.Handler, logging.Handler]:
    os.makedirs(LOG_DIR, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    controller_log = TimedRotatingFileHandler(
        LOG_FILE, when="midnight", backupCount=KEEP_DAYS, encoding="utf-8", delay=True
    )
    controller_log.setFormatter(formatter)
    controller_log.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console.setLevel(console_level())
    return controller_log, console


CONTROLLER_LOG_HANDLER, CONSOLE_HANDLER = _build_handlers()


def get_logger(name: str) -> logging.Logger:
    """Controller logger `name`, attached to the shared handlers exactly once."""
    logger = logging.getLogger(name)
    if CONTROLLER_LOG_HANDLER not in logger.handlers:
        logger.setLevel(logging.DEBUG)
        logger.addHandler(CONTROLLER_LOG_HANDLER)
        logger.addHandler(CONSOLE_HANDLER)
        # Records stop here; the root logger would print them a second time
        logger.propagate = False
    return logger
