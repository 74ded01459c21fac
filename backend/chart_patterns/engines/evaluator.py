"""
PatternEvaluationCoordinator: run every stored pattern against one chart context.

The context is wrapped once per run; each pattern's script is evaluated
serially in store order against that same guarded view. A failing pattern
only ever counts as "not matched".
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from chart_patterns.engines.script import GuardCache, SandboxExecutor
from chart_patterns.schemas import PatternMatch

if TYPE_CHECKING:
    from chart_patterns.core.pattern_store import PatternStore

_log = logging.getLogger(__name__)


class PatternEvaluationCoordinator:
    """
    evaluate_all(context) -> [PatternMatch, ...] in store order.
    """

    def __init__(self, store: PatternStore, executor: SandboxExecutor | None = None) -> None:
        self._store = store
        self._executor = executor or SandboxExecutor()

    def evaluate_all(self, context: Any) -> list[PatternMatch]:
        patterns = self._store.list()
        cache = GuardCache()
        view = cache.wrap(context)
        started = time.monotonic()

        matches: list[PatternMatch] = []
        for p in patterns:
            try:
                matched = self._executor.evaluate(p.script, view, name=p.name)
            except Exception as e:
                _log.error("Pattern %r (id=%s) evaluation crashed: %s", p.name, p.id, e, exc_info=True)
                continue
            if matched:
                matches.append(PatternMatch(id=p.id, name=p.name, description=p.description or ""))

        _log.info(
            "Evaluated %d patterns in %.1fms: %d matched",
            len(patterns),
            (time.monotonic() - started) * 1000,
            len(matches),
        )
        return matches
