"""Template functions.

Two kinds of functions can be called from an expression:

* **built-ins** – pure helpers evaluated locally (``concat``, ``toLower`` …);
* **external** – capabilities injected by a provider (``listKeys`` …).
  They reach outside the planner, so the evaluator only invokes them while
  evaluating a node that is included in the deployment.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from az_condplan.errors import InvalidExpression

logger = logging.getLogger(__name__)

TemplateFunction = Callable[..., Any]


# ---------------------------------------------------------------------------
# Built-ins
# ---------------------------------------------------------------------------


def _concat(*args: Any) -> Any:
    if args and all(isinstance(a, list) for a in args):
        return [item for a in args for item in a]
    return "".join(_to_string(a) for a in args)


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def _empty(value: Any) -> bool:
    return value is None or (isinstance(value, str | list | dict) and len(value) == 0)


def _length(value: Any) -> int:
    if not isinstance(value, str | list | dict):
        raise InvalidExpression(f"length() expects a string, array or object, got {value!r}")
    return len(value)


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return _to_string(item).lower() in container.lower()
    if isinstance(container, list | dict):
        return item in container
    raise InvalidExpression(f"contains() expects a string, array or object, got {container!r}")


def _coalesce(*args: Any) -> Any:
    return next((a for a in args if a is not None), None)


def _format(template: str, *args: Any) -> str:
    return template.format(*(_to_string(a) for a in args))


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidExpression(f"int() cannot convert {value!r}") from exc


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise InvalidExpression(f"bool() cannot convert {value!r}")
    return bool(value)


def _union(*args: Any) -> Any:
    if all(isinstance(a, dict) for a in args):
        merged: dict[str, Any] = {}
        for a in args:
            merged.update(a)
        return merged
    if all(isinstance(a, list) for a in args):
        out: list[Any] = []
        for a in args:
            out.extend(x for x in a if x not in out)
        return out
    raise InvalidExpression("union() expects only objects or only arrays")


BUILTINS: dict[str, TemplateFunction] = {
    "concat": _concat,
    "toLower": lambda s: _to_string(s).lower(),
    "toUpper": lambda s: _to_string(s).upper(),
    "empty": _empty,
    "length": _length,
    "contains": _contains,
    "coalesce": _coalesce,
    "format": _format,
    "string": _to_string,
    "int": _to_int,
    "bool": _to_bool,
    "union": _union,
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class FunctionRegistry:
    """Lookup table for built-in and external template functions."""

    def __init__(self, external: Mapping[str, TemplateFunction] | None = None) -> None:
        self._builtins = dict(BUILTINS)
        self._external: dict[str, TemplateFunction] = {}
        for name, fn in (external or {}).items():
            self.register_external(name, fn)

    def register_external(self, name: str, fn: TemplateFunction) -> None:
        if name in self._builtins:
            raise ValueError(f"'{name}' is a built-in function and cannot be overridden")
        self._external[name] = fn
        logger.debug("Registered external function %s", name)

    def is_external(self, name: str) -> bool:
        return name in self._external

    def get(self, name: str) -> TemplateFunction:
        fn = self._builtins.get(name) or self._external.get(name)
        if fn is None:
            raise InvalidExpression(f"Unknown function '{name}'")
        return fn

    def names(self) -> list[str]:
        return sorted({*self._builtins, *self._external})
