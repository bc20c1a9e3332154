import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional
from typing_extensions import override

from mltrack.common.common import LOG_NAME

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def _remove_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


class BaseLogger(ABC):
    """
    Base class of the loggers used by the tracking server and the CLI.

    A logger owns the handlers of one named ``logging`` logger. Library
    modules log through ``logging.getLogger(__name__)``; their names live
    under ``mltrack``, so their records reach whatever handlers the server or
    the CLI installed on the ``mltrack`` logger.
    """
    def __init__(self, name: str = LOG_NAME, debug: bool = False):
        self.name = name
        self.level = logging.DEBUG if debug else logging.INFO
        self.formatter = logging.Formatter(LOG_FORMAT)
        self.logger = logging.getLogger(name)
        self.logger.propagate = False
        self.logger.setLevel(self.level)
        for handler in self._create_handlers():
            handler.setFormatter(self.formatter)
            self.logger.addHandler(handler)

    @abstractmethod
    def _create_handlers(self) -> List[logging.Handler]:
        """Handlers to attach to the underlying logger."""
        pass

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)

    def close(self) -> None:
        """Detach and close every handler of the underlying logger."""
        _remove_handlers(self.logger)


class FileLogger(BaseLogger):
    """
    Writes to ``<log_dir>/<filename>``; the directory must exist.

    Without a filename one is made from the logger name and the current time.
    """
    def __init__(self, name: str, log_dir: str, filename: Optional[str] = None, debug: bool = False):
        if not os.path.exists(log_dir):
            raise ValueError(f"Log directory {log_dir} does not exist")
        self.log_dir = log_dir
        self.filename = filename or f"{name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        self.log_file = os.path.join(log_dir, self.filename)
        super().__init__(name, debug)

    def _create_handlers(self) -> List[logging.Handler]:
        return [logging.FileHandler(self.log_file)]


class ConsoleLogger(BaseLogger):
    """Prints to stderr."""

    def _create_handlers(self) -> List[logging.Handler]:
        return [logging.StreamHandler()]


class CompositeLogger(BaseLogger):
    """
    Console logger that also writes a log file when ``log_dir`` is given.

    The file records everything down to DEBUG, the console follows ``debug``.
    Building a new instance for the same name replaces the old handlers.
    """
    def __init__(self, name: str = LOG_NAME, log_dir: Optional[str] = None,
                 filename: Optional[str] = None, debug: bool = False):
        self.log_dir = log_dir
        self.filename = filename or f"{name}.log"
        _remove_handlers(logging.getLogger(name))
        super().__init__(name, debug)
        if log_dir is not None:
            # handlers filter by their own level
            self.logger.setLevel(logging.DEBUG)

    def _create_handlers(self) -> List[logging.Handler]:
        console = logging.StreamHandler()
        console.setLevel(self.level)
        if self.log_dir is None:
            return [console]
        os.makedirs(self.log_dir, exist_ok=True)
        file_handler = logging.FileHandler(self.log_file)
        file_handler.setLevel(logging.DEBUG)
        return [console, file_handler]

    @property
    def log_file(self) -> Optional[str]:
        if self.log_dir is None:
            return None
        return os.path.join(self.log_dir, self.filename)


class EmptyLogger(BaseLogger):
    """Drops every message."""

    def __init__(self):
        super().__init__(name=f"{LOG_NAME}.null")

    def _create_handlers(self) -> List[logging.Handler]:
        return []

    @override
    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        pass
