"""
Size limits for operations that run as one uninterruptible C call.

The deadline is only checked between bytecodes, so a single builtin call
(``sum(range(10**9))``, ``10**10**8``, ``"a" * 10**9``) would finish before it
fires. Every operation that can build an arbitrarily large result from a
small input is routed through a check here and raises ValueError when the
result would exceed the limits below.
"""

import functools
import math
import operator
import re
from types import SimpleNamespace
from typing import Any

from RestrictedPython.Limits import limited_range

MAX_INT_BITS = 65536
MAX_SEQUENCE_LENGTH = 10_000
MAX_MATH_ARGUMENT = 10_000

_SIZED_TYPES = (str, bytes, bytearray, list, tuple)
_TEXT_TYPES = (str, bytes, bytearray)

# %[(key)][flags][width][.precision]
_PERCENT_SPEC = re.compile(r"%(?:\([^)]*\))?[#0\- +]*(\*|\d+)?(?:\.(\*|\d+))?")
_DIGITS = re.compile(r"\d+")


def _too_large(what: str, limit: int) -> ValueError:
    return ValueError(f"{what} too large (limit {limit})")


def check_int_bits(bits: int) -> None:
    if bits > MAX_INT_BITS:
        raise _too_large("Integer result", MAX_INT_BITS)


def check_length(length: int) -> None:
    if length > MAX_SEQUENCE_LENGTH:
        raise _too_large("Sequence result", MAX_SEQUENCE_LENGTH)


def _is_int(value: Any) -> bool:
    return isinstance(value, int)


def _check_repeat(seq: Any, count: Any) -> None:
    if _is_int(count):
        check_length(len(seq) * max(count, 0))


def check_format_string(fmt: str | bytes | bytearray) -> None:
    """Reject %-format widths and precisions above the limit, and ``*`` widths."""
    text = fmt if isinstance(fmt, str) else bytes(fmt).decode("latin-1")
    for m in _PERCENT_SPEC.finditer(text):
        for part in m.groups():
            if part == "*":
                raise ValueError("'*' width in %-format is not allowed")
            if part is not None:
                check_length(int(part))


def check_format_spec(spec: str) -> None:
    """Reject format-spec numbers (width, precision) above the limit."""
    for digits in _DIGITS.findall(spec):
        check_length(int(digits))


def _check_pow(base: Any, exp: Any) -> None:
    if _is_int(base) and _is_int(exp) and exp > 0 and abs(base) > 1:
        check_int_bits(base.bit_length() * exp)


def _check_mul(left: Any, right: Any) -> None:
    if _is_int(left) and _is_int(right):
        check_int_bits(left.bit_length() + right.bit_length())
    elif isinstance(left, _SIZED_TYPES):
        _check_repeat(left, right)
    elif isinstance(right, _SIZED_TYPES):
        _check_repeat(right, left)


def _check_lshift(left: Any, right: Any) -> None:
    if _is_int(left) and _is_int(right) and left:
        check_int_bits(left.bit_length() + right)


def _check_add(left: Any, right: Any) -> None:
    if isinstance(left, _SIZED_TYPES) and isinstance(right, _SIZED_TYPES):
        check_length(len(left) + len(right))


def _check_mod(left: Any, right: Any) -> None:
    if isinstance(left, _TEXT_TYPES):
        check_format_string(left)


_CHECKS = {
    "**": _check_pow,
    "*": _check_mul,
    "<<": _check_lshift,
    "+": _check_add,
    "%": _check_mod,
}

BINARY_OPS = {
    "**": operator.pow,
    "*": operator.mul,
    "<<": operator.lshift,
    "+": operator.add,
    "%": operator.mod,
}


def check_binop(op: str, left: Any, right: Any) -> None:
    """Raise ValueError if ``left <op> right`` would build an oversized result."""
    check = _CHECKS.get(op)
    if check is not None:
        check(left, right)


def bounded_binop(op: str, left: Any, right: Any) -> Any:
    check_binop(op, left, right)
    return BINARY_OPS[op](left, right)


# -- builtins ------------------------------------------------------------------


def bounded_pow(base: Any, exp: Any, mod: Any = None) -> Any:
    if mod is None:
        _check_pow(base, exp)
        return pow(base, exp)
    return pow(base, exp, mod)


def bounded_sum(iterable: Any, start: Any = 0) -> Any:
    # sum() over sequences concatenates in one quadratic C loop
    if not isinstance(start, (int, float, complex)):
        raise TypeError("sum() start value must be a number")
    return sum(iterable, start)


def bounded_bytes(*args: Any, **kwargs: Any) -> bytes:
    if args and _is_int(args[0]):
        check_length(args[0])
    return bytes(*args, **kwargs)


BOUNDED_BUILTINS: dict[str, Any] = {
    "range": limited_range,
    "pow": bounded_pow,
    "sum": bounded_sum,
    "bytes": bounded_bytes,
}


# -- str / bytes methods that grow their receiver --------------------------------


def _padding(name: str):
    def call(s: Any, width: Any, *args: Any) -> Any:
        if _is_int(width):
            check_length(width)
        return getattr(s, name)(width, *args)

    return call


def _replace(s: Any, old: Any, new: Any, count: int = -1) -> Any:
    hits = s.count(old)
    if count >= 0:
        hits = min(hits, count)
    check_length(len(s) + hits * max(len(new) - len(old), 0))
    return s.replace(old, new, count)


def _join(s: Any, iterable: Any) -> Any:
    items = list(iterable)
    check_length(sum(len(i) for i in items) + len(s) * max(len(items) - 1, 0))
    return s.join(items)


def _expandtabs(s: Any, tabsize: int = 8) -> Any:
    tab = "\t" if isinstance(s, str) else b"\t"
    check_length(len(s) + s.count(tab) * max(tabsize, 0))
    return s.expandtabs(tabsize)


_TEXT_METHODS = {
    "center": _padding("center"),
    "ljust": _padding("ljust"),
    "rjust": _padding("rjust"),
    "zfill": _padding("zfill"),
    "replace": _replace,
    "join": _join,
    "expandtabs": _expandtabs,
}


def bounded_text_method(obj: Any, name: str) -> Any:
    """Size-checked replacement for a growing str/bytes method, or None."""
    if isinstance(obj, _TEXT_TYPES):
        method = _TEXT_METHODS.get(name)
        if method is not None:
            return functools.partial(method, obj)
    return None


# -- math --------------------------------------------------------------------------


def _bounded_math(fn):
    @functools.wraps(fn)
    def call(*args: Any) -> Any:
        for a in args:
            if _is_int(a) and a > MAX_MATH_ARGUMENT:
                raise _too_large(f"{fn.__name__}() argument", MAX_MATH_ARGUMENT)
        return fn(*args)

    return call


def make_math_namespace() -> SimpleNamespace:
    """Public names of ``math``; factorial, comb and perm get an argument limit."""
    ns = {name: getattr(math, name) for name in dir(math) if not name.startswith("_")}
    for name in ("factorial", "comb", "perm"):
        if name in ns:
            ns[name] = _bounded_math(ns[name])
    return SimpleNamespace(**ns)
