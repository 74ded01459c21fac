"""
Pattern script engine (Python, RestrictedPython).

Exports: SandboxExecutor, GuardCache, GuardedView, wrap, check_script,
compile_predicate, build_restricted_globals and the sandbox errors.
"""

from .errors import (
    SandboxError,
    ScriptCompileError,
    ScriptExecutionError,
    ScriptRejectedError,
    ScriptTimeoutError,
)
from .executor import SandboxExecutor
from .guard import GuardCache, GuardedView, wrap
from .sandbox import build_restricted_globals, check_script, compile_predicate

__all__ = [
    "GuardCache",
    "GuardedView",
    "SandboxError",
    "SandboxExecutor",
    "ScriptCompileError",
    "ScriptExecutionError",
    "ScriptRejectedError",
    "ScriptTimeoutError",
    "build_restricted_globals",
    "check_script",
    "compile_predicate",
    "wrap",
]
