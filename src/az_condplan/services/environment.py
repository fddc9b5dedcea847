"""Resolve template parameters and variables into the evaluation environment.

Parameters are resolved first, in declaration order: a supplied value is
coerced to the declared type, otherwise the default expression is evaluated
against the parameters resolved so far.  Variables are then resolved eagerly
in dependency order.  The resulting environment is read-only.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

import networkx as nx

from az_condplan.errors import CyclicDependency, InvalidExpression, InvalidParameter
from az_condplan.expressions.ast import identifiers
from az_condplan.expressions.evaluator import Evaluator
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.models.template import Parameter, Template

logger = logging.getLogger(__name__)

Environment = Mapping[str, Any]

_PYTHON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "secureString": (str,),
    "int": (int,),
    "bool": (bool,),
    "object": (dict,),
    "array": (list,),
}


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


def _coerce(param: Parameter, value: Any) -> Any:
    """Convert a string value (e.g. from the command line) to the declared type."""
    if not isinstance(value, str) or param.type in ("string", "secureString"):
        return value
    try:
        if param.type == "int":
            return int(value)
        if param.type == "bool":
            if value.lower() not in ("true", "false"):
                raise ValueError(value)
            return value.lower() == "true"
        return json.loads(value)
    except ValueError as exc:
        raise InvalidParameter(
            f"Parameter '{param.name}' expects {param.type}, got {value!r}",
            location=f"parameters.{param.name}",
        ) from exc


def _check_type(param: Parameter, value: Any) -> None:
    expected = _PYTHON_TYPES[param.type]
    wrong_bool = param.type == "int" and isinstance(value, bool)
    if not isinstance(value, expected) or wrong_bool:
        raise InvalidParameter(
            f"Parameter '{param.name}' expects {param.type}, got {type(value).__name__}",
            location=f"parameters.{param.name}",
        )
    if param.allowed_values is not None and value not in param.allowed_values:
        allowed = ", ".join(repr(v) for v in param.allowed_values)
        raise InvalidParameter(
            f"Value {value!r} is not allowed for parameter '{param.name}' (allowed: {allowed})",
            location=f"parameters.{param.name}",
        )


def resolve_parameters(
    template: Template,
    values: Mapping[str, Any],
    functions: FunctionRegistry | None = None,
) -> dict[str, Any]:
    """Return resolved parameter values keyed by name."""
    unknown = sorted(set(values) - set(template.parameters))
    if unknown:
        raise InvalidParameter(f"Unknown parameter(s): {', '.join(unknown)}")

    resolved: dict[str, Any] = {}
    for name, param in template.parameters.items():
        if name in values:
            value = _coerce(param, values[name])
        elif param.default is not None:
            try:
                value = Evaluator(resolved, functions=functions).evaluate(
                    param.default.tree, param.default.source
                )
            except InvalidExpression as exc:
                raise exc.at(location=f"parameters.{name}") from None
        else:
            raise InvalidParameter(
                f"Missing value for parameter '{name}'", location=f"parameters.{name}"
            )
        _check_type(param, value)
        resolved[name] = value
    return resolved


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------


def _variable_order(template: Template) -> list[str]:
    graph: nx.DiGraph = nx.DiGraph()
    order = {name: i for i, name in enumerate(template.variables)}
    node_ids = set(template.node_ids)
    for name, var in template.variables.items():
        graph.add_node(name)
        refs = identifiers(var.expression.tree)
        if refs & node_ids:
            raise InvalidExpression(
                f"Variable '{name}' cannot reference resources or modules "
                f"({', '.join(sorted(refs & node_ids))})",
                location=f"variables.{name}",
                expression=var.expression.source,
            )
        for ref in refs & set(template.variables):
            graph.add_edge(name, ref)
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        pass
    else:
        names = [edge[0] for edge in cycle]
        raise CyclicDependency([*names, names[0]], location="variables")
    # Edges point consumer -> producer, so producers come first in the reverse graph.
    return list(nx.lexicographical_topological_sort(graph.reverse(copy=False), key=order.get))


def resolve_environment(
    template: Template,
    values: Mapping[str, Any] | None = None,
    functions: FunctionRegistry | None = None,
) -> Environment:
    """Resolve parameters and variables into a read-only environment."""
    env = resolve_parameters(template, values or {}, functions)
    for name in _variable_order(template):
        var = template.variables[name]
        try:
            env[name] = Evaluator(env, functions=functions).evaluate(
                var.expression.tree, var.expression.source
            )
        except InvalidExpression as exc:
            raise exc.at(location=f"variables.{name}") from None
    logger.debug("Resolved environment: %s", sorted(env))
    return MappingProxyType(env)
