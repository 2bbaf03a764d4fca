"""Collect the log records emitted while a tool call runs."""

import logging

DEFAULT_LOGGER = "pkgsync"


class LogCapture(logging.Handler):
    """Logging handler that buffers formatted messages of one logger tree.

    Usage:
        with LogCapture() as capture:
            run_something()
        response.logs = capture.lines
    """

    def __init__(self, logger_name: str = DEFAULT_LOGGER, level: int = logging.INFO, max_lines: int = 500):
        super().__init__(level)
        self.logger_name = logger_name
        self.max_lines = max_lines
        self.lines: list[str] = []
        self.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        self._previous_level: int | None = None

    def emit(self, record: logging.LogRecord) -> None:
        if len(self.lines) >= self.max_lines:
            return
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def __enter__(self) -> "LogCapture":
        logger = logging.getLogger(self.logger_name)
        logger.addHandler(self)
        if logger.getEffectiveLevel() > self.level:
            self._previous_level = logger.level
            logger.setLevel(self.level)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        logger = logging.getLogger(self.logger_name)
        logger.removeHandler(self)
        if self._previous_level is not None:
            logger.setLevel(self._previous_level)
            self._previous_level = None
