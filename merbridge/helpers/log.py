import logging
import inspect
import os
import time
from typing import Optional


class MerbridgeFormatter(logging.Formatter):
    """
    Custom formatter that formats log messages as [merbridge][method_name] msg.

    Records at ERROR or above additionally carry a [LEVEL] tag.
    """

    def format(self, record):
        method_name = getattr(record, 'method_name', record.funcName)
        if method_name == "<module>":
            prefix = '[merbridge]'
        else:
            prefix = f'[merbridge][{method_name}]'

        if record.levelno >= logging.ERROR:
            prefix = f'{prefix}[{record.levelname}]'

        original_format = self._style._fmt
        self._style._fmt = f'{prefix} %(message)s'

        result = super().format(record)

        self._style._fmt = original_format

        return result


_logger = None


def _initial_level() -> int:
    name = os.environ.get("MERBRIDGE_LOG_LEVEL", "").strip().upper()
    if not name:
        return logging.INFO
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger() -> logging.Logger:
    """
    Get or create the merbridge logger instance.

    Returns a configured logger with a custom formatter that outputs
    messages in the format: [merbridge][method_name] msg here

    The initial level is INFO unless ``MERBRIDGE_LOG_LEVEL`` names another
    standard level (``DEBUG``, ``WARNING``, ...).

    Returns
    -------
    logging.Logger
        Configured merbridge logger instance

    Examples
    --------
    >>> from merbridge.helpers.log import get_logger
    >>> logger = get_logger()
    >>> logger.info("Starting process")  # Prints: [merbridge][<module>] Starting process
    """
    global _logger

    if _logger is None:
        _logger = logging.getLogger('merbridge')
        _logger.setLevel(_initial_level())

        # Only add handler if none exists (avoid duplicate handlers)
        if not _logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(MerbridgeFormatter())
            _logger.addHandler(handler)

        _logger.propagate = False

    return _logger


def _get_caller_name() -> str:
    """
    Get the name of the calling function/method.

    Returns
    -------
    str
        Name of the calling function or "unknown" if not found
    """
    frame = inspect.currentframe()
    if frame is not None:
        try:
            # this function -> log() -> log_info/log_warning/etc -> actual caller
            caller_frame = frame.f_back
            if caller_frame is not None:
                caller_frame = caller_frame.f_back
                if caller_frame is not None:
                    caller_frame = caller_frame.f_back
                    if caller_frame is not None:
                        return caller_frame.f_code.co_name
        finally:
            del frame
    return "unknown"


def log(msg: str, method_name: Optional[str] = None, level: int = logging.INFO):
    """
    Log a message with automatic method name detection.

    Parameters
    ----------
    msg : str
        The message to log
    method_name : str, optional
        The name of the method/function. If None, will auto-detect from call stack.
    level : int, optional
        Logging level (default: logging.INFO)

    Examples
    --------
    >>> from merbridge.helpers.log import log
    >>>
    >>> def my_function():
    ...     log("Starting process")  # Prints: [merbridge][my_function] Starting process
    """
    if method_name is None:
        method_name = _get_caller_name()

    logger = get_logger()
    logger.log(level, msg, extra={'method_name': method_name})


def log_info(msg: str, method_name: Optional[str] = None):
    """Log an info message."""
    log(msg, method_name=method_name, level=logging.INFO)


def log_debug(msg: str, method_name: Optional[str] = None):
    """Log a debug message."""
    log(msg, method_name=method_name, level=logging.DEBUG)


def log_warning(msg: str, method_name: Optional[str] = None):
    """Log a warning message."""
    log(msg, method_name=method_name, level=logging.WARNING)


def log_error(msg: str, method_name: Optional[str] = None):
    """Log an error message."""
    log(msg, method_name=method_name, level=logging.ERROR)


def log_critical(msg: str, method_name: Optional[str] = None):
    """Log a critical message."""
    log(msg, method_name=method_name, level=logging.CRITICAL)


def set_log_level(level: int):
    """
    Set the logging level for merbridge logger.

    Parameters
    ----------
    level : int
        Logging level (e.g., logging.DEBUG, logging.INFO, logging.WARNING)

    Examples
    --------
    >>> from merbridge.helpers.log import set_log_level
    >>> import logging
    >>>
    >>> # Show every bridge call
    >>> set_log_level(logging.DEBUG)
    """
    logger = get_logger()
    logger.setLevel(level)


class LogTime:
    """
    Context manager that logs how long the wrapped block took.

    Examples
    --------
    >>> from merbridge.helpers.log import LogTime
    >>> with LogTime("bootstrap"):
    ...     run_bootstrap()
    [merbridge][bootstrap] bootstrap took 1.23 seconds
    """

    def __init__(self, name: str = "process"):
        self.name = name
        self.start = 0.0
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.start
        log(f"{self.name} took {self.elapsed:.2f} seconds", method_name=self.name)
        return False
