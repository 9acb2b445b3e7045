"""
Utility functions for logging and describing upstream failures.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ fails.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object, falling back to its type name
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def format_exception_message(exception: BaseException) -> str:
    """
    Describe an exception in one line, e.g. for a plain-text error body.

    Exceptions with an empty message (httpx.ConnectTimeout() and friends) are
    described by their type name.
    """
    if exception is None:
        return "None"
    return _safe_str(exception) or type(exception).__name__


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Forward]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    logger.log(
        level,
        f"{prefix} Exception: {format_exception_message(exception)}",
        exc_info=exception,
    )
