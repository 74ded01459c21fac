"""
SandboxExecutor: evaluate(script, context) -> bool.

Validates the script (deny-list scan), compiles it with RestrictedPython,
runs it against a guarded context and coerces the result strictly: only a
literal True is a match.

Deadline: SCRIPT_EXEC_TIMEOUT seconds. In the main thread a SIGALRM interval
timer interrupts the script; elsewhere (worker threads, no SIGALRM) a
per-thread trace function does. Both raise _DeadlineExceeded, which derives
from BaseException so script-level ``except Exception`` cannot swallow it.
"""

import logging
import signal
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from chart_patterns.core.config import settings

from .errors import (
    SandboxError,
    ScriptCompileError,
    ScriptExecutionError,
    ScriptRejectedError,
    ScriptTimeoutError,
)
from .guard import GuardCache, is_guarded
from .modules import make_log_module
from .sandbox import PREDICATE_NAME, build_restricted_globals, check_script, compile_predicate

_log = logging.getLogger(__name__)


class _DeadlineExceeded(BaseException):
    pass


@contextmanager
def _alarm_deadline(timeout_sec: float) -> Iterator[None]:
    """SIGALRM-based deadline. Main thread only. Re-fires until the script unwinds."""

    def _handler(signum: int, frame: Any) -> None:
        raise _DeadlineExceeded()

    old = signal.signal(signal.SIGALRM, _handler)
    try:
        signal.setitimer(signal.ITIMER_REAL, timeout_sec, min(timeout_sec, 0.01))
        try:
            yield
        finally:
            signal.setitimer(signal.ITIMER_REAL, 0)
    finally:
        signal.signal(signal.SIGALRM, old)


@contextmanager
def _trace_deadline(timeout_sec: float) -> Iterator[None]:
    """Trace-function deadline for threads that cannot receive signals."""
    deadline = time.monotonic() + timeout_sec

    def _tracer(frame: Any, event: str, arg: Any) -> Any:
        if time.monotonic() > deadline:
            raise _DeadlineExceeded()
        return _tracer

    old = sys.gettrace()
    sys.settrace(_tracer)
    try:
        yield
    finally:
        sys.settrace(old)


@contextmanager
def _deadline(timeout_sec: float | None) -> Iterator[None]:
    if timeout_sec is None or timeout_sec <= 0:
        yield
        return
    use_signal = (
        hasattr(signal, "SIGALRM")
        and hasattr(signal, "setitimer")
        and threading.current_thread() is threading.main_thread()
    )
    cm = _alarm_deadline(timeout_sec) if use_signal else _trace_deadline(timeout_sec)
    with cm:
        yield


class SandboxExecutor:
    """
    Run a pattern script in a RestrictedPython sandbox against a guarded context.

    The script sees ``context`` (also bound as ``chart``) and ``log``; nothing else
    from the host is reachable.
    """

    def __init__(
        self,
        *,
        timeout: float | None = None,
        log_enabled: bool | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = settings.SCRIPT_EXEC_TIMEOUT if timeout is None else timeout
        self.log_enabled = settings.SCRIPT_LOG_ENABLED if log_enabled is None else log_enabled
        self._script_logger = logger

    def run(self, script: str, context: Any, *, name: str | None = None) -> Any:
        """
        Validate, compile and run *script*; return its raw result.
        Raises a SandboxError subclass on any failure.
        """
        label = name or "<anonymous>"
        _log.debug("Pattern %s: validating", label)
        check_script(script)
        code, is_expr = compile_predicate(script)

        view = context if is_guarded(context) else GuardCache().wrap(context)
        script_log = make_log_module(
            logger_instance=self._script_logger,
            extra={"pattern": label},
            enabled=self.log_enabled,
            max_length=settings.SCRIPT_LOG_MAX_LENGTH,
        )
        g = build_restricted_globals({"context": view, "chart": view, "log": script_log})

        _log.debug("Pattern %s: running (timeout=%ss)", label, self.timeout)
        try:
            with _deadline(self.timeout):
                if is_expr:
                    return eval(code, g)  # noqa: S307 - restricted environment
                exec(code, g)  # noqa: S102 - restricted environment
                return g[PREDICATE_NAME]()
        except _DeadlineExceeded:
            raise ScriptTimeoutError(
                f"Script execution timed out after {self.timeout}s"
            ) from None
        except SandboxError:
            raise
        except Exception as e:
            raise ScriptExecutionError(f"{type(e).__name__}: {e}") from e

    def evaluate(self, script: str, context: Any, *, name: str | None = None) -> bool:
        """
        Return True only when the script returns the literal True.
        Rejection, compile errors, exceptions and timeouts all yield False; never raises.
        """
        label = name or "<anonymous>"
        try:
            result = self.run(script, context, name=name)
        except ScriptRejectedError as e:
            _log.warning("Pattern %s rejected: %s", label, e)
            return False
        except ScriptCompileError as e:
            _log.warning("Pattern %s failed to compile: %s", label, e)
            return False
        except ScriptTimeoutError as e:
            _log.warning("Pattern %s timed out: %s", label, e)
            return False
        except SandboxError as e:
            _log.info("Pattern %s raised: %s", label, e)
            return False
        matched = result is True
        _log.debug("Pattern %s: completed, matched=%s", label, matched)
        return matched
