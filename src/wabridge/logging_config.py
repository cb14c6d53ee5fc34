"""Logging setup for wabridge.

Configures a single console handler shared by the root logger and the
``wabridge`` logger hierarchy, an optional debug log file, and quiets the
chatty CDP / websocket / HTTP libraries down to ``CDP_LOGGING_LEVEL``.
"""

import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from wabridge.config import CONFIG  # noqa: E402

LOG_FORMAT = '%(asctime)s %(levelname)-8s [%(name)s] %(message)s'

CDP_LOGGERS = [
    'cdp_use',
    'cdp_use.client',
    'websockets',
    'websockets.client',
    'bubus',
]

THIRD_PARTY_LOGGERS = [
    'httpx',
    'httpcore',
    'asyncio',
]


def _parse_level(level: str | int | None, default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return default
    parsed = logging.getLevelName(str(level).upper())
    return parsed if isinstance(parsed, int) else default


def setup_logging(stream=None, log_level=None, force_setup=False, debug_log_file=None):
    """Setup logging configuration for wabridge.

    Args:
        stream: Output stream for logs (default: sys.stdout).
        log_level: Override log level (default: uses CONFIG.LOGGING_LEVEL)
        force_setup: Force reconfiguration even if handlers already exist
        debug_log_file: Optional path for a DEBUG-level log file
            (default: CONFIG.DEBUG_LOG_FILE)

    Returns:
        The configured ``wabridge`` logger.
    """
    if logging.getLogger().hasHandlers() and not force_setup:
        return logging.getLogger('wabridge')

    level = _parse_level(log_level or CONFIG.LOGGING_LEVEL)

    root = logging.getLogger()
    root.handlers = []

    console = logging.StreamHandler(stream or sys.stdout)
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)
    root.setLevel(level)

    wabridge_logger = logging.getLogger('wabridge')
    wabridge_logger.propagate = False
    wabridge_logger.handlers = [console]
    wabridge_logger.setLevel(level)

    debug_log_file = debug_log_file or CONFIG.DEBUG_LOG_FILE
    if debug_log_file:
        file_handler = logging.FileHandler(debug_log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        wabridge_logger.addHandler(file_handler)
        wabridge_logger.setLevel(logging.DEBUG)
        console.setLevel(level)

    cdp_level = _parse_level(CONFIG.CDP_LOGGING_LEVEL, default=logging.WARNING)
    for logger_name in CDP_LOGGERS:
        logging.getLogger(logger_name).setLevel(cdp_level)

    for logger_name in THIRD_PARTY_LOGGERS:
        third_party = logging.getLogger(logger_name)
        third_party.setLevel(logging.WARNING)
        third_party.propagate = True

    wabridge_logger.debug(f'Logging initialized at level {logging.getLevelName(level)}')
    return wabridge_logger
