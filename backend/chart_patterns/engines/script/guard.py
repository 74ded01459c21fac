"""
Read-only guarded views over host objects exposed to pattern scripts.

Everything a script can reach from its ``context`` goes through a GuardedView:

- attribute reads forward to the real object, except introspection handles
  (``__class__``, ``__mro__``, ``__globals__``, frame attributes, any
  underscore name), which read as ``None``;
- writes, deletes and item assignment are silently ignored;
- mutating methods of built-in containers read as ``None``;
- values coming out (attributes, items, iteration, call results) are wrapped
  through the same GuardCache, so the same object always maps to the same view.

A GuardCache holds strong references to everything it has wrapped, so it must
be scoped to a single evaluation run and dropped afterwards.
"""

import logging
from collections.abc import Callable, Mapping, MutableMapping, MutableSequence, MutableSet
from types import BuiltinMethodType, MethodType
from typing import Any

_log = logging.getLogger(__name__)

PRIMITIVE_TYPES: tuple[type, ...] = (str, int, float, complex, bool, bytes, type(None))

# Reads of these names on a guarded view always yield None.
BLOCKED_ATTRS = frozenset(
    {
        # constructor / inheritance bindings
        "__class__",
        "__bases__",
        "__base__",
        "__mro__",
        "mro",
        "__subclasses__",
        "__init_subclass__",
        # namespaces and code objects
        "__dict__",
        "__globals__",
        "__builtins__",
        "__code__",
        "__closure__",
        "__func__",
        "__self__",
        "__module__",
        # frames reachable from generators, coroutines and tracebacks
        "gi_frame",
        "gi_code",
        "gi_yieldfrom",
        "cr_frame",
        "cr_code",
        "cr_await",
        "ag_frame",
        "ag_code",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "tb_frame",
        "tb_next",
    }
)

_MUTATING_METHODS: tuple[tuple[type, frozenset[str]], ...] = (
    (
        MutableSequence,
        frozenset({"append", "extend", "insert", "pop", "remove", "clear", "sort", "reverse"}),
    ),
    (
        MutableMapping,
        frozenset({"pop", "popitem", "clear", "update", "setdefault"}),
    ),
    (
        MutableSet,
        frozenset(
            {
                "add",
                "discard",
                "remove",
                "pop",
                "clear",
                "update",
                "difference_update",
                "intersection_update",
                "symmetric_difference_update",
            }
        ),
    ),
)


def _target(view: "GuardedView") -> Any:
    return object.__getattribute__(view, "_guard_target")


def _cache(view: "GuardedView") -> "GuardCache":
    return object.__getattribute__(view, "_guard_cache")


def _is_mutator(target: Any, name: str) -> bool:
    for abc, names in _MUTATING_METHODS:
        if name in names and isinstance(target, abc):
            return True
    return False


class GuardedView:
    """Read-only, reflection-blocking proxy. Create through GuardCache.wrap."""

    __slots__ = ("_guard_target", "_guard_cache")

    def __init__(self, target: Any, cache: "GuardCache") -> None:
        object.__setattr__(self, "_guard_target", target)
        object.__setattr__(self, "_guard_cache", cache)

    # -- reads ---------------------------------------------------------------

    def __getattribute__(self, name: str) -> Any:
        if name in BLOCKED_ATTRS or name.startswith("_"):
            return None
        target = _target(self)
        cache = _cache(self)
        if isinstance(target, Mapping):
            try:
                if name in target:
                    return cache.wrap(target[name])
            except TypeError as e:
                _log.debug(
                    "Key lookup %r failed on %s, falling back to attribute: %s",
                    name,
                    type(target).__name__,
                    e,
                )
        if _is_mutator(target, name):
            return None
        return cache.wrap(getattr(target, name))

    def __getitem__(self, key: Any) -> Any:
        cache = _cache(self)
        return cache.wrap(_target(self)[cache.inbound(key)])

    def __iter__(self):
        cache = _cache(self)
        for item in _target(self):
            yield cache.wrap(item)

    def __len__(self) -> int:
        return len(_target(self))

    def __contains__(self, item: Any) -> bool:
        return _cache(self).inbound(item) in _target(self)

    def __bool__(self) -> bool:
        return bool(_target(self))

    def __str__(self) -> str:
        return str(_target(self))

    def __repr__(self) -> str:
        return f"GuardedView({_target(self)!r})"

    def __hash__(self) -> int:
        return hash(_target(self))

    def __eq__(self, other: object) -> bool:
        return _target(self) == _cache(self).inbound(other)

    def __ne__(self, other: object) -> bool:
        return _target(self) != _cache(self).inbound(other)

    def __lt__(self, other: Any) -> bool:
        return _target(self) < _cache(self).inbound(other)

    def __le__(self, other: Any) -> bool:
        return _target(self) <= _cache(self).inbound(other)

    def __gt__(self, other: Any) -> bool:
        return _target(self) > _cache(self).inbound(other)

    def __ge__(self, other: Any) -> bool:
        return _target(self) >= _cache(self).inbound(other)

    # -- calls ---------------------------------------------------------------

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        cache = _cache(self)
        real_args = tuple(cache.inbound(a) for a in args)
        real_kwargs = {k: cache.inbound(v) for k, v in kwargs.items()}
        return cache.wrap(_target(self)(*real_args, **real_kwargs))

    # -- writes: ignored -----------------------------------------------------

    def __setattr__(self, name: str, value: Any) -> None:
        _log.debug("Ignored write to guarded attribute %r", name)

    def __delattr__(self, name: str) -> None:
        _log.debug("Ignored delete of guarded attribute %r", name)

    def __setitem__(self, key: Any, value: Any) -> None:
        _log.debug("Ignored guarded item assignment")

    def __delitem__(self, key: Any) -> None:
        _log.debug("Ignored guarded item delete")


class GuardCache:
    """
    Identity-preserving wrapper cache.

    Wrapping the same object twice, directly or through different paths,
    returns the same GuardedView. Entries keep the wrapped object alive so
    ids cannot be recycled while the cache exists.
    """

    def __init__(self) -> None:
        self._views: dict[Any, tuple[Any, GuardedView]] = {}

    def __len__(self) -> int:
        return len(self._views)

    def wrap(self, value: Any) -> Any:
        if isinstance(value, PRIMITIVE_TYPES) or type(value) is GuardedView:
            return value
        key = self._key(value)
        hit = self._views.get(key)
        if hit is not None:
            return hit[1]
        view = GuardedView(value, self)
        self._views[key] = (value, view)
        return view

    @staticmethod
    def _key(value: Any) -> Any:
        # Bound methods are recreated on every attribute read; key them by receiver + function
        if isinstance(value, MethodType):
            return ("method", id(value.__self__), id(value.__func__))
        if isinstance(value, BuiltinMethodType):
            receiver = getattr(value, "__self__", None)
            if receiver is not None:
                return ("builtin", id(receiver), value.__qualname__)
        return id(value)

    def inbound(self, value: Any) -> Any:
        """Translate a value passed from the script towards host code."""
        if type(value) is GuardedView:
            return _target(value)
        if callable(value) and not isinstance(value, type):
            return self._guard_callback(value)
        return value

    def _guard_callback(self, fn: Callable[..., Any]) -> Callable[..., Any]:
        def callback(*args: Any, **kwargs: Any) -> Any:
            wrapped_args = tuple(self.wrap(a) for a in args)
            wrapped_kwargs = {k: self.wrap(v) for k, v in kwargs.items()}
            return self.inbound(fn(*wrapped_args, **wrapped_kwargs))

        return callback


def wrap(value: Any, cache: GuardCache | None = None) -> Any:
    """Guard *value*. Without a cache, a fresh one is created for this value's graph."""
    return (cache if cache is not None else GuardCache()).wrap(value)


def is_guarded(value: Any) -> bool:
    return type(value) is GuardedView
