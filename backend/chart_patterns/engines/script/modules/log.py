"""
Log module for pattern scripts: info, warn, error, debug.

Messages are coerced to str and truncated; script-supplied format args and
kwargs are not forwarded to the logging machinery.
"""

import logging
from types import SimpleNamespace
from typing import Any

logger = logging.getLogger("chart_patterns.script")


def make_log_module(
    *,
    logger_instance: logging.Logger | None = None,
    extra: dict[str, Any] | None = None,
    enabled: bool = True,
    max_length: int = 500,
) -> Any:
    """Build the `log` object: info, warn, error, debug. extra is passed to logger as context."""
    log = logger_instance or logger
    ext = dict(extra or {})

    def _log(level: int, msg: Any, *args: Any) -> None:
        if not enabled or not log.isEnabledFor(level):
            return
        text = " ".join(str(part) for part in (msg, *args))
        if len(text) > max_length:
            text = text[:max_length] + "..."
        log.log(level, "%s", text, extra=ext)

    def info(msg: Any, *args: Any) -> None:
        _log(logging.INFO, msg, *args)

    def warn(msg: Any, *args: Any) -> None:
        _log(logging.WARNING, msg, *args)

    def error(msg: Any, *args: Any) -> None:
        _log(logging.ERROR, msg, *args)

    def debug(msg: Any, *args: Any) -> None:
        _log(logging.DEBUG, msg, *args)

    return SimpleNamespace(info=info, warn=warn, error=error, debug=debug)
