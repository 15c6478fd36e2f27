import logging
import os
import sys
import traceback
import pendulum

from passvault.config.config_vault import LOG_FILE

_log_path = LOG_FILE


def setup_logging(log_file: str | os.PathLike = LOG_FILE,
                  level: int = logging.ERROR) -> None:
    """
    Route log records to a file and install the uncaught-exception hook.

    Does nothing if the root logger already has handlers, so calling it
    from tests or from an embedding application is harmless.
    """
    global _log_path

    if logging.getLogger().handlers:
        return  # already configured

    _log_path = log_file
    logging.basicConfig(
        filename=log_file,
        filemode="a",
        level=level,
        format="%(message)s",
    )

    sys.excepthook = log_uncaught_exceptions


def stamp(msg: str) -> str:
    """Prefix a log message with the current ISO-8601 time."""
    return f"[{pendulum.now().to_iso8601_string()}] {msg}"


def log_uncaught_exceptions(exctype, value, tb):
    lines = []
    for frame in traceback.extract_tb(tb):
        filename = os.path.basename(frame.filename)
        lines.append(
            f'  File "{filename}", line {frame.lineno}, in {frame.name}'
        )

    trace_summary = "\n".join(reversed(lines)) if lines else "  <no traceback>"
    error_msg = f"{exctype.__name__}: {value}"

    logging.getLogger("passvault").error(stamp(
        f"Uncaught exception: {error_msg}\n"
        f"Traceback (most recent call last):\n"
        f"{trace_summary}\n"
        f"{error_msg}\n"
    ))

    print("\nError! Something went wrong.", file=sys.stderr)
    print(f"Details saved to {_log_path}\n", file=sys.stderr)
