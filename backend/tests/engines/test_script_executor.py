"""Unit tests for engines.script.executor (SandboxExecutor)."""

import logging
import os
import signal
import threading
import time
from unittest.mock import patch

import pytest

from chart_patterns.engines.script import (
    GuardCache,
    SandboxExecutor,
    ScriptCompileError,
    ScriptExecutionError,
    ScriptRejectedError,
    ScriptTimeoutError,
)
from tests.utils.chart import Chart, make_chart


# Each would run as one long C call without the size limits
LONG_BUILTIN_SCRIPTS = [
    "return sum(range(10**9)) > 0",
    "return 10**10**8 > 0",
    "x = 2\nx **= 10**8\nreturn x > 0",
    "return (1 << 10**9) > 0",
    "return len('a' * 10**9) > 0",
    "return len(''.join(['a' * 10000] * 10000)) > 0",
    "return len('x'.center(10**9)) > 0",
    "return len('%0999999999d' % 1) > 0",
    "return len(f'{1:>999999999}') > 0",
    "return len(sum([[0] * 10000] * 10000, [])) > 0",
    "return len(bytes(10**9)) > 0",
    "return math.factorial(10**7) > 0",
]


@pytest.fixture
def executor() -> SandboxExecutor:
    return SandboxExecutor(timeout=0.1)


class TestStrictBoolean:
    def test_return_true(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("return True;", chart) is True

    def test_return_false(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("return False;", chart) is False

    @pytest.mark.parametrize("script", ["return 1", "return 'yes'", "return [1]", "return context", "x = 1"])
    def test_truthy_non_bool_not_matched(self, executor: SandboxExecutor, chart: Chart, script: str) -> None:
        assert executor.evaluate(script, chart) is False

    def test_expression_script(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("chart.palace('命宫').has('紫微')", chart) is True

    def test_gender_scenario(self, executor: SandboxExecutor) -> None:
        script = "return context.gender == 'male';"
        assert executor.evaluate(script, make_chart("male")) is True
        assert executor.evaluate(script, make_chart("female")) is False

    def test_run_returns_raw_result(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.run("return len(context.palaces)", chart) == 12


class TestScriptFeatures:
    def test_loops_and_comprehensions(self, executor: SandboxExecutor, chart: Chart) -> None:
        script = (
            "count = 0\n"
            "for p in context.palaces:\n"
            "    if not p.is_empty():\n"
            "        count += 1\n"
            "names = [s.name for s in context.palace('命宫').major_stars]\n"
            "return count == 4 and names == ['紫微', '七杀']\n"
        )
        assert executor.evaluate(script, chart) is True

    def test_builtins_any_and_unpacking(self, executor: SandboxExecutor, chart: Chart) -> None:
        script = (
            "for key, value in context.meta.items():\n"
            "    log.debug(key)\n"
            "return any(s.mutagen == '禄' for p in context.palaces for s in p.major_stars)\n"
        )
        assert executor.evaluate(script, chart) is True

    def test_surrounded_palaces(self, executor: SandboxExecutor, chart: Chart) -> None:
        script = "s = chart.surrounded_palaces('命宫')\nreturn s.opposite.has('天府') and s.career.has('廉贞')"
        assert executor.evaluate(script, chart) is True

    def test_dict_context(self, executor: SandboxExecutor) -> None:
        assert executor.evaluate("context.gender == 'female'", {"gender": "female"}) is True

    def test_accepts_prewrapped_context(self, executor: SandboxExecutor, chart: Chart) -> None:
        view = GuardCache().wrap(chart)
        assert executor.evaluate("context is chart", view) is True

    def test_bounded_operations_still_work(self, executor: SandboxExecutor, chart: Chart) -> None:
        script = (
            "s = 'ab' * 3\n"
            "s += '!'\n"
            "n = 2 ** 10\n"
            "n *= 3\n"
            "return (s == 'ababab!' and n == 3072 and (1 << 4) == 16\n"
            "        and ', '.join([p.name for p in context.palaces][:2]) == '命宫, 兄弟'\n"
            "        and '%03d' % 7 == '007' and f'{5:>3}' == '  5'\n"
            "        and 'a-b'.replace('-', '+') == 'a+b' and math.factorial(5) == 120\n"
            "        and sum(range(10)) == 45 and pow(2, 8) == 256)\n"
        )
        assert executor.evaluate(script, chart) is True


class TestIsolation:
    def test_writes_do_not_reach_context(self, executor: SandboxExecutor, chart: Chart) -> None:
        script = "context.gender = 'female'\ncontext.palaces[0] = None\nreturn context.gender == 'male'"
        assert executor.evaluate(script, chart) is True
        assert chart.gender == "male"
        assert chart.palaces[0].name == "命宫"

    def test_container_mutation_fails(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("context.palaces.append(1)\nreturn True", chart) is False
        assert len(chart.palaces) == 12

    def test_reflection_is_absent(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("return context.mro is None and context.palace.mro is None", chart) is True

    def test_open_unavailable(self, executor: SandboxExecutor, chart: Chart) -> None:
        with pytest.raises(ScriptRejectedError):
            executor.run("return open('/etc/passwd')", chart)

    def test_exit_not_invoked(self, executor: SandboxExecutor, chart: Chart) -> None:
        with patch.object(os, "_exit") as os_exit:
            assert executor.evaluate("sys.exit(1)", chart) is False
            assert executor.evaluate("raise SystemExit(1)", chart) is False
        os_exit.assert_not_called()

    def test_script_state_not_shared(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("leaked = 1\nreturn True", chart) is True
        assert executor.evaluate("return leaked == 1", chart) is False


class TestFailures:
    def test_run_raises_typed_errors(self, executor: SandboxExecutor, chart: Chart) -> None:
        with pytest.raises(ScriptRejectedError):
            executor.run("import os", chart)
        with pytest.raises(ScriptCompileError):
            executor.run("return (", chart)
        with pytest.raises(ScriptExecutionError) as exc_info:
            executor.run("return 1 / 0", chart)
        assert isinstance(exc_info.value.__cause__, ZeroDivisionError)

    def test_exception_swallowed(self, executor: SandboxExecutor, chart: Chart) -> None:
        assert executor.evaluate("raise ValueError('boom')", chart) is False
        assert executor.evaluate("return context.no_such_method()", chart) is False

    def test_failure_is_logged(self, executor: SandboxExecutor, chart: Chart, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="chart_patterns.engines.script.executor"):
            executor.evaluate("raise ValueError('boom')", chart, name="broken")
        assert "broken" in caplog.text


@pytest.mark.skipif(not hasattr(signal, "SIGALRM"), reason="SIGALRM not available (e.g. Windows)")
class TestTimeoutMainThread:
    def test_infinite_loop_times_out(self, chart: Chart) -> None:
        executor = SandboxExecutor(timeout=0.05)
        started = time.monotonic()
        with pytest.raises(ScriptTimeoutError, match="timed out"):
            executor.run("while True:\n    pass", chart)
        assert time.monotonic() - started < 2

    def test_evaluate_returns_false(self, chart: Chart) -> None:
        executor = SandboxExecutor(timeout=0.05)
        assert executor.evaluate("while True:\n    pass", chart) is False

    def test_except_exception_cannot_swallow_deadline(self, chart: Chart) -> None:
        executor = SandboxExecutor(timeout=0.05)
        script = (
            "while True:\n"
            "    try:\n"
            "        while True:\n"
            "            pass\n"
            "    except Exception:\n"
            "        pass\n"
        )
        started = time.monotonic()
        assert executor.evaluate(script, chart) is False
        assert time.monotonic() - started < 2

    @pytest.mark.parametrize("script", LONG_BUILTIN_SCRIPTS)
    def test_long_builtin_call_bounded(self, chart: Chart, script: str) -> None:
        executor = SandboxExecutor(timeout=0.1)
        started = time.monotonic()
        assert executor.evaluate(script, chart) is False
        assert time.monotonic() - started < 1

    def test_oversized_range_raises_execution_error(self, chart: Chart) -> None:
        with pytest.raises(ScriptExecutionError) as exc_info:
            SandboxExecutor(timeout=0.1).run("return sum(range(10**9)) > 0", chart)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_previous_handler_restored(self, chart: Chart) -> None:
        before = signal.getsignal(signal.SIGALRM)
        SandboxExecutor(timeout=0.05).evaluate("while True:\n    pass", chart)
        assert signal.getsignal(signal.SIGALRM) is before
        assert signal.getitimer(signal.ITIMER_REAL) == (0.0, 0.0)


class TestTimeoutWorkerThread:
    def test_long_builtin_calls_bounded_off_main_thread(self, chart: Chart) -> None:
        executor = SandboxExecutor(timeout=0.1)
        results: list[bool] = []

        def worker() -> None:
            for script in LONG_BUILTIN_SCRIPTS:
                results.append(executor.evaluate(script, chart))

        started = time.monotonic()
        t = threading.Thread(target=worker)
        t.start()
        t.join(timeout=5)
        assert not t.is_alive()
        assert results == [False] * len(LONG_BUILTIN_SCRIPTS)
        assert time.monotonic() - started < 5

    def test_infinite_loop_times_out_off_main_thread(self, chart: Chart) -> None:
        executor = SandboxExecutor(timeout=0.05)
        results: list[bool] = []

        def worker() -> None:
            results.append(executor.evaluate("while True:\n    pass", chart))
            results.append(executor.evaluate("return True", chart))

        t = threading.Thread(target=worker)
        t.start()
        t.join(timeout=5)
        assert not t.is_alive()
        assert results == [False, True]


def test_timeout_disabled_when_zero(chart: Chart) -> None:
    executor = SandboxExecutor(timeout=0)
    assert executor.evaluate("return sum(range(100)) == 4950", chart) is True


@patch("chart_patterns.engines.script.executor.settings")
def test_timeout_from_settings(mock_settings, chart: Chart) -> None:
    mock_settings.SCRIPT_EXEC_TIMEOUT = 0.25
    mock_settings.SCRIPT_LOG_ENABLED = False
    mock_settings.SCRIPT_LOG_MAX_LENGTH = 100
    executor = SandboxExecutor()
    assert executor.timeout == 0.25
    assert executor.log_enabled is False
    assert executor.evaluate("return True", chart) is True
