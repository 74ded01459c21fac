"""
RestrictedPython sandbox for pattern scripts.

Allowed: RestrictedPython safe builtins (without process-terminating
exceptions), list, dict, set, tuple, len, range, min, max, sum, abs, sorted,
any, all, enumerate, zip, reversed, math, datetime/date/time/timedelta,
and the injected context objects (context, chart, log).

Blocked: open, exec, eval, __import__, compile, os, sys, subprocess, etc.
A textual deny-list scan rejects the obvious escape idioms before compiling.
Operations that could build a huge result in one C call (range, **, *, +,
<<, %, padding and join) are size-checked through the limits module.
"""

import ast
import builtins
import functools
import operator
import re
import textwrap
from datetime import date, datetime, time, timedelta
from typing import Any

from RestrictedPython import RestrictingNodeTransformer, compile_restricted
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safe_builtins,
    safer_getattr,
)
from RestrictedPython.transformer import copy_locations

from .errors import ScriptCompileError, ScriptRejectedError
from .guard import is_guarded
from .limits import (
    BOUNDED_BUILTINS,
    bounded_binop,
    bounded_text_method,
    check_binop,
    check_format_spec,
    make_math_namespace,
)

# Whole identifiers that reject a script outright unless used as an attribute (x.exit).
DENIED_NAMES: tuple[str, ...] = (
    # process and host environment
    "os",
    "sys",
    "subprocess",
    "signal",
    "open",
    "exit",
    "quit",
    # module loading
    "import",
    "__import__",
    "importlib",
    # dynamic code evaluation
    "eval",
    "exec",
    "compile",
    # global bindings
    "globals",
    "locals",
    "vars",
    "builtins",
    "__builtins__",
    # reflection
    "__class__",
    "__bases__",
    "__mro__",
    "__subclasses__",
    "__globals__",
)

_DENIED_PATTERNS = tuple(
    (name, re.compile(rf"(^|[^.\w])\b{re.escape(name)}\b")) for name in DENIED_NAMES
)

# Exceptions a script could raise to take down the host process
_UNSAFE_EXCEPTIONS = ("BaseException", "SystemExit", "KeyboardInterrupt", "GeneratorExit")

_EXTRA_BUILTINS = (
    "list",
    "dict",
    "set",
    "tuple",
    "len",
    "range",
    "min",
    "max",
    "sum",
    "abs",
    "sorted",
    "any",
    "all",
    "enumerate",
    "zip",
    "reversed",
    "bool",
)

_INPLACE_OPS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "|=": operator.ior,
    "&=": operator.iand,
    "^=": operator.ixor,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
}

# Binary operators routed through _binop_ so their result size can be checked
_BOUNDED_AST_OPS: dict[type, str] = {
    ast.Pow: "**",
    ast.Mult: "*",
    ast.LShift: "<<",
    ast.Add: "+",
    ast.Mod: "%",
}

PREDICATE_NAME = "predicate"


def find_denied_name(script: str) -> str | None:
    """Return the first deny-listed identifier used in *script*, or None."""
    for name, pattern in _DENIED_PATTERNS:
        if pattern.search(script):
            return name
    return None


def check_script(script: str, *, max_length: int | None = None) -> None:
    """
    Cheap static checks run before a script is stored or executed.
    Raises ScriptRejectedError. This is an early filter, not the safety boundary.
    """
    if not isinstance(script, str) or not script.strip():
        raise ScriptRejectedError("Script is empty")
    if max_length is not None and len(script) > max_length:
        raise ScriptRejectedError(f"Script too long (max {max_length} chars)")
    name = find_denied_name(script)
    if name is not None:
        raise ScriptRejectedError(f"Script contains forbidden keyword '{name}'")


def _is_expression(script: str) -> bool:
    try:
        ast.parse(script, mode="eval")
    except SyntaxError:
        return False
    return True


def _reject_unbounded_handlers(tree: ast.AST) -> None:
    """Bare except and finally would let a script keep running past its deadline."""
    for node in ast.walk(tree):
        if isinstance(node, ast.ExceptHandler) and node.type is None:
            raise ScriptCompileError("bare 'except:' is not allowed in pattern scripts")
        if isinstance(node, (ast.Try, getattr(ast, "TryStar", ast.Try))) and node.finalbody:
            raise ScriptCompileError("'finally' is not allowed in pattern scripts")


class PatternPolicy(RestrictingNodeTransformer):
    """
    RestrictingNodeTransformer that also bounds single-call work:
    ``a ** b``, ``a * b``, ``a << b``, ``a + b`` and ``a % b`` become
    ``_binop_(op, a, b)``, and f-string format specs must be literal with
    widths under the sequence limit.
    """

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        node = self.node_contents_visit(node)
        op = _BOUNDED_AST_OPS.get(type(node.op))
        if op is None:
            return node
        new_node = ast.Call(
            func=ast.Name("_binop_", ast.Load()),
            args=[ast.Constant(op), node.left, node.right],
            keywords=[],
        )
        copy_locations(new_node, node)
        return new_node

    def visit_FormattedValue(self, node: ast.FormattedValue) -> Any:
        spec = node.format_spec
        if spec is not None:
            parts = spec.values if isinstance(spec, ast.JoinedStr) else [spec]
            if not all(isinstance(p, ast.Constant) for p in parts):
                self.error(node, "f-string format specs must be literal")
            else:
                try:
                    check_format_spec("".join(str(p.value) for p in parts))
                except ValueError as e:
                    self.error(node, f"f-string format spec: {e}")
        return self.node_contents_visit(node)


def _as_predicate_source(script: str) -> str:
    body = textwrap.indent(textwrap.dedent(script).strip("\n"), "    ")
    return f"def {PREDICATE_NAME}():\n{body}\n"


@functools.lru_cache(maxsize=256)
def compile_predicate(script: str, filename: str = "<pattern>") -> tuple[Any, bool]:
    """
    Compile a pattern script with RestrictedPython.

    A single expression compiles in eval mode; anything else becomes the body
    of ``def predicate():`` so it can ``return`` its result.
    Returns (code, is_expression). Raises ScriptCompileError.
    """
    expression = script.strip().rstrip(";").rstrip()
    is_expr = _is_expression(expression)
    source = expression if is_expr else _as_predicate_source(script)
    try:
        _reject_unbounded_handlers(ast.parse(source, mode="eval" if is_expr else "exec"))
        code = compile_restricted(
            source, filename, "eval" if is_expr else "exec", policy=PatternPolicy
        )
    except ScriptCompileError:
        raise
    except SyntaxError as e:
        raise ScriptCompileError(f"RestrictedPython: {e.msg}") from e
    if code is None:
        raise ScriptCompileError("RestrictedPython: compile failed")
    return code, is_expr


def _make_safe_builtins() -> dict[str, Any]:
    """
    safe_builtins minus exceptions that escape ``except Exception`` handlers,
    with size-checked range, pow, sum and bytes.
    """
    safe = dict(safe_builtins)
    for name in _UNSAFE_EXCEPTIONS:
        safe.pop(name, None)
    safe.update(BOUNDED_BUILTINS)
    return safe


def guarded_getattr(obj: Any, name: str, default: Any = None) -> Any:
    """safer_getattr, with growing str/bytes methods swapped for size-checked ones."""
    value = safer_getattr(obj, name, default)
    bounded = bounded_text_method(obj, name)
    return value if bounded is None else bounded


def guarded_write(ob: Any) -> Any:
    """Guarded views ignore writes themselves; everything else gets full_write_guard."""
    if is_guarded(ob):
        return ob
    return full_write_guard(ob)


def inplace_var(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise SyntaxError(f"Unsupported in-place operator {op}")
    check_binop(op[:-1], x, y)
    return fn(x, y)


def apply_call(f: Any, *args: Any, **kwargs: Any) -> Any:
    return f(*args, **kwargs)


def _make_guard_globals() -> dict[str, Any]:
    """Guards required by RestrictedPython's rewritten bytecode."""
    return {
        "_getattr_": guarded_getattr,
        "_binop_": bounded_binop,
        "_getiter_": default_guarded_getiter,
        "_getitem_": default_guarded_getitem,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": guarded_write,
        "_inplacevar_": inplace_var,
        "_apply_": apply_call,
    }


def _make_extra_globals() -> dict[str, Any]:
    """Extra safe symbols: math, datetime, date, time, timedelta."""
    return {
        "math": make_math_namespace(),
        "datetime": datetime,
        "date": date,
        "time": time,
        "timedelta": timedelta,
    }


def build_restricted_globals(context_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Build the globals dict for exec/eval: safe builtins, guards, extras,
    and the injected names (context, chart, log).
    """
    safe = _make_safe_builtins()
    g: dict[str, Any] = {
        "__builtins__": safe,
        "__name__": "pattern",
    }
    g.update(_make_guard_globals())
    g.update(_make_extra_globals())
    for name in _EXTRA_BUILTINS:
        obj = safe.get(name, getattr(builtins, name, None))
        if obj is not None:
            g[name] = obj
    g.update(context_dict)
    return g
