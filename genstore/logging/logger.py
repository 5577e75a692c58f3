import logging
import sys
from typing import TextIO

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class Log:
    """Process-wide logger for the storage pipeline.

    Keyword arguments are context fields (``generation_id``, ``file_index``,
    ``provider`` ...). They are appended to the line as ``key=value`` pairs so
    that every line about one file or one generation can be grepped together.
    """

    _logger: logging.Logger = logging.getLogger("genstore")

    @classmethod
    def configure(cls, log_level: str, stream: TextIO | None = None) -> None:
        """Configure the logger with the specified level and a stream handler."""
        cls._logger.setLevel(log_level.upper())
        cls._logger.propagate = False
        if not cls._logger.handlers:
            handler = logging.StreamHandler(stream or sys.stdout)
            handler.setFormatter(logging.Formatter(_FORMAT))
            cls._logger.addHandler(handler)

    @staticmethod
    def _render(message: str, fields: dict[str, object]) -> str:
        context = " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)
        return f"{message} | {context}" if context else message

    @classmethod
    def info(cls, message: str, **fields: object) -> None:
        """Log an info message."""
        cls._logger.info(cls._render(message, fields))

    @classmethod
    def error(cls, message: str, **fields: object) -> None:
        """Log an error message."""
        cls._logger.error(cls._render(message, fields))

    @classmethod
    def warning(cls, message: str, **fields: object) -> None:
        """Log a warning message."""
        cls._logger.warning(cls._render(message, fields))

    @classmethod
    def debug(cls, message: str, **fields: object) -> None:
        """Log a debug message."""
        cls._logger.debug(cls._render(message, fields))

    @classmethod
    def exception(cls, message: str, **fields: object) -> None:
        """Log at error level with the active exception's traceback."""
        cls._logger.exception(cls._render(message, fields))
