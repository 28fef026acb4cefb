import asyncio
import logging
from functools import partial
from pathlib import Path
from typing import Optional, Union

from ..capabilities import CURRENT_FILE_CHANGED, NO_FILE_SELECTED, EventEmitter

LOG = logging.getLogger(__name__)

_LEVELS = {
    "log": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LocalFileService(EventEmitter):
    """File service backed by a path on the local filesystem"""

    def __init__(self, path: Optional[Union[str, Path]] = None, logger_name: str = "create2_deployer.host"):
        super().__init__()
        self._path = Path(path) if path else None
        self._host_log = logging.getLogger(logger_name)

    def select(self, path: Optional[Union[str, Path]]) -> None:
        """Change the current file and notify listeners"""
        self._path = Path(path) if path else None
        if self._path is None:
            self.emit(NO_FILE_SELECTED)
        else:
            self.emit(CURRENT_FILE_CHANGED, str(self._path))

    async def get_current_file(self) -> Optional[str]:
        if self._path is None or not self._path.is_file():
            return None
        return str(self._path)

    async def read_file(self, path: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(Path(path).read_text, encoding="utf-8"))

    async def log(self, message: str, level: str = "log") -> None:
        self._host_log.log(_LEVELS.get(level, logging.INFO), message)
