"""
Sandbox error hierarchy.

Every failure inside SandboxExecutor.run is raised as a SandboxError subclass;
SandboxExecutor.evaluate downgrades all of them to "not matched".
"""


class SandboxError(Exception):
    """Base class for failures while validating, compiling or running a script."""

    pass


class ScriptRejectedError(SandboxError, ValueError):
    """Script failed the static deny-list scan or is blank/too long."""

    pass


class ScriptCompileError(SandboxError, SyntaxError):
    """Script is not valid (restricted) Python."""

    pass


class ScriptTimeoutError(SandboxError, TimeoutError):
    """Raised when script execution exceeds SCRIPT_EXEC_TIMEOUT."""

    pass


class ScriptExecutionError(SandboxError):
    """Script raised while running; the original exception is chained."""

    pass
