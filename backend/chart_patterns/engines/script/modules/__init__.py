"""
Script context modules injected next to the guarded chart context.
"""

from chart_patterns.engines.script.modules.log import make_log_module

__all__ = [
    "make_log_module",
]
