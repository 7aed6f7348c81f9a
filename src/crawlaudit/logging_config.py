"""Logging setup shared by the ``crawl`` and ``serve`` commands.

Log records always go to stderr. The ``crawl`` command writes its NDJSON
progress frames to stdout, so a log line there would corrupt the stream.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Per-request chatter from asset downloads and the HTTP server
QUIET_LOGGERS = ('httpx', 'httpcore', 'asyncio', 'uvicorn.access')


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Route crawl and server logs to stderr and, optionally, a log file.

    Unknown level names fall back to INFO. Calling again replaces the
    previous handlers, so ``serve`` and ``crawl`` can each reconfigure.

    Args:
        level: Log level name (``LOG_LEVEL`` / ``--log-level``)
        log_file: Extra log file (``LOG_FILE`` / ``--log-file``); parent
            directories are created
        format_string: Record format, DEFAULT_FORMAT if None
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
