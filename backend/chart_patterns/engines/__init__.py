"""
Engines: sandboxed pattern scripts (RestrictedPython) and the evaluation coordinator.
"""

from chart_patterns.engines.evaluator import PatternEvaluationCoordinator
from chart_patterns.engines.script import SandboxExecutor

__all__ = [
    "PatternEvaluationCoordinator",
    "SandboxExecutor",
]
