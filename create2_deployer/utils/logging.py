import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Transport libraries that log every request at DEBUG
NOISY_LOGGERS = ("aiohttp", "web3", "urllib3", "asyncio")


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS
) -> logging.Logger:
    """Configure root logging for the CLI

    Args:
        log_level: Level name for the deployer's own loggers
        log_file: Optional path; parent directories are created
        quiet: Logger names capped at WARNING unless log_level is DEBUG

    Returns:
        The root logger
    """
    level = getattr(logging, log_level.upper())
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in quiet:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    return root
