"""Conditional evaluation pass.

Walks the dependency graph producers-first and, for every node:

1. evaluates its condition (a module member is included only when its
   module is included too);
2. evaluates its name and **every** property expression whatever the
   outcome of step 1, exactly like ARM evaluates a resource body before
   honouring its condition.  Members of a skipped module are the exception:
   the module is evaluated as one unit, so their bodies are left alone.

Reading an excluded node outside a guard is fatal
(:class:`UnguardedConditionalReference`).  Nothing is mutated once the pass
has returned.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from az_condplan.errors import (
    InvalidExpression,
    ReferenceUnavailable,
    UnguardedConditionalReference,
)
from az_condplan.expressions.ast import Expression, conjoin
from az_condplan.expressions.evaluator import Evaluator, NodeState
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.models.template import Node, PropertyValue, Template, TemplateExpression
from az_condplan.services.graph_builder import DependencyGraph

logger = logging.getLogger(__name__)


@dataclass
class EvaluatedNode:
    """A node once its condition, name and properties have been evaluated."""

    node: Node
    condition: Expression  # effective condition
    condition_value: bool
    included: bool
    name: Any
    properties: dict[str, Any] = field(default_factory=dict)
    skip_reason: Literal["condition", "module"] | None = None

    @property
    def id(self) -> str:
        return self.node.id


@dataclass
class EvaluatedGraph:
    graph: DependencyGraph
    environment: Mapping[str, Any]
    nodes: dict[str, EvaluatedNode]

    @property
    def order(self) -> list[str]:
        return self.graph.order

    @property
    def template(self) -> Template:
        return self.graph.template

    def included(self) -> list[str]:
        return [n for n in self.order if self.nodes[n].included]

    def excluded(self) -> list[str]:
        return [n for n in self.order if not self.nodes[n].included]


def effective_conditions(template: Template) -> dict[str, Expression]:
    """Return each node's condition conjoined with its module's condition."""
    conditions: dict[str, Expression] = {}
    for node in template.nodes:
        cond = node.condition.tree
        if node.group is not None:
            cond = conjoin(template.node(node.group).condition.tree, cond)
        conditions[node.id] = cond
    return conditions


class _NodeEvaluator:
    """Evaluates the expressions of one node and reports failures in place."""

    def __init__(self, node: Node, evaluator: Evaluator) -> None:
        self.node = node
        self.evaluator = evaluator

    def value(self, expr: TemplateExpression, location: str) -> Any:
        try:
            return self.evaluator.evaluate(expr.tree, expr.source)
        except ReferenceUnavailable as exc:
            if exc.guarded:
                raise exc.at(node_id=self.node.id, location=location) from None
            raise UnguardedConditionalReference(
                exc.target, node_id=self.node.id, location=location, expression=expr.source
            ) from exc
        except InvalidExpression as exc:
            raise exc.at(node_id=self.node.id, location=location) from None

    def properties(self, value: PropertyValue, location: str) -> Any:
        if isinstance(value, dict):
            return {k: self.properties(v, f"{location}.{k}") for k, v in value.items()}
        if isinstance(value, list):
            return [self.properties(v, f"{location}[{i}]") for i, v in enumerate(value)]
        return self.value(value, location)


def evaluate_conditions(
    graph: DependencyGraph,
    environment: Mapping[str, Any],
    functions: FunctionRegistry | None = None,
) -> EvaluatedGraph:
    """Run the conditional evaluation pass over *graph*."""
    template = graph.template
    functions = functions or FunctionRegistry()
    conditions = effective_conditions(template)
    states = {n.id: NodeState(n.id, condition=conditions[n.id]) for n in template.nodes}
    evaluated: dict[str, EvaluatedNode] = {}

    for node_id in graph.order:
        node = template.node(node_id)
        state = states[node_id]

        gate = _NodeEvaluator(node, Evaluator(environment, states, functions))
        condition_value = gate.value(node.condition, "condition")
        if not isinstance(condition_value, bool):
            raise InvalidExpression(
                f"Condition must evaluate to a bool, got {condition_value!r}",
                node_id=node_id,
                location="condition",
                expression=node.condition.source,
            )

        group_included = node.group is None or evaluated[node.group].included
        included = condition_value and group_included

        body = _NodeEvaluator(
            node, Evaluator(environment, states, functions, allow_external=included)
        )
        name = body.value(node.name, "name")
        if not isinstance(name, str) or not name:
            raise InvalidExpression(
                f"Name must evaluate to a non-empty string, got {name!r}",
                node_id=node_id,
                location="name",
                expression=node.name.source,
            )
        if group_included:
            properties = body.properties(node.properties, "properties")
        else:
            # The module boundary guards its members: a skipped module's
            # resource bodies are never evaluated.
            properties = {}

        state.view = _view(node, name, properties)
        state.included = included

        skip_reason: Literal["condition", "module"] | None = None
        if not condition_value:
            skip_reason = "condition"
        elif not group_included:
            skip_reason = "module"
        evaluated[node_id] = EvaluatedNode(
            node=node,
            condition=conditions[node_id],
            condition_value=condition_value,
            included=included,
            name=name,
            properties=properties,
            skip_reason=skip_reason,
        )
        if included:
            logger.debug("Included %s (%s)", node_id, name)
        else:
            logger.info("Skipping %s (%s): %s is false", node_id, name, skip_reason)

    return EvaluatedGraph(graph=graph, environment=environment, nodes=evaluated)


def _view(node: Node, name: Any, properties: dict[str, Any]) -> dict[str, Any]:
    if node.is_module:
        return {"id": node.id, "name": name, "type": "module"}
    return {"id": node.id, "name": name, "type": node.type, "properties": properties}
