"""Dependency graph builder.

Scans the declared nodes, extracts the references between them and builds a
directed acyclic graph.  Edges point from consumer to producer; every vertex
carries the node's condition expression.  Three kinds of edge exist:

    reference   an expression in the consumer names the producer
    dependsOn   declared explicitly in the template
    member      a module member depends on its module's condition
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import networkx as nx

from az_condplan.errors import CyclicDependency, InvalidExpression, NodeLimitExceeded
from az_condplan.expressions.ast import identifiers
from az_condplan.models.template import Node, PropertyValue, Template, TemplateExpression

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 800


def iter_expressions(node: Node) -> Iterator[tuple[str, TemplateExpression]]:
    """Yield ``(location, expression)`` for every expression declared on *node*."""
    yield "condition", node.condition
    yield "name", node.name
    yield from _iter_properties(node.properties, "properties")


def _iter_properties(
    value: PropertyValue, location: str
) -> Iterator[tuple[str, TemplateExpression]]:
    if isinstance(value, dict):
        for key, item in value.items():
            yield from _iter_properties(item, f"{location}.{key}")
    elif isinstance(value, list):
        for i, item in enumerate(value):
            yield from _iter_properties(item, f"{location}[{i}]")
    else:
        yield location, value


@dataclass
class DependencyGraph:
    """The reference DAG of a template plus its deterministic evaluation order."""

    template: Template
    graph: nx.DiGraph
    order: list[str]

    def producers(self, node_id: str) -> list[str]:
        """Nodes that *node_id* reads, in declaration order."""
        return sorted(self.graph.successors(node_id), key=self.position)

    def consumers(self, node_id: str) -> list[str]:
        """Nodes that read *node_id*, in declaration order."""
        return sorted(self.graph.predecessors(node_id), key=self.position)

    def condition(self, node_id: str) -> TemplateExpression:
        return self.graph.nodes[node_id]["condition"]

    def position(self, node_id: str) -> int:
        return self.graph.nodes[node_id]["position"]


def _find_cycle(graph: nx.DiGraph) -> list[str] | None:
    try:
        edges = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    names = [edge[0] for edge in edges]
    return [*names, names[0]]


def topological_order(graph: nx.DiGraph) -> list[str]:
    """Producers before consumers, ties broken by declaration position."""
    return list(
        nx.lexicographical_topological_sort(
            graph.reverse(copy=False), key=lambda n: graph.nodes[n]["position"]
        )
    )


def build_dependency_graph(
    template: Template, max_nodes: int = DEFAULT_MAX_NODES
) -> DependencyGraph:
    """Build the consumer -> producer DAG for *template*.

    Raises :class:`CyclicDependency` if the references form a cycle and
    :class:`NodeLimitExceeded` if the template is larger than *max_nodes*.
    """
    if len(template.nodes) > max_nodes:
        raise NodeLimitExceeded(len(template.nodes), max_nodes)

    graph: nx.DiGraph = nx.DiGraph()
    node_ids = set(template.node_ids)
    for position, node in enumerate(template.nodes):
        graph.add_node(
            node.id, kind=node.kind, condition=node.condition, position=position, group=node.group
        )

    for node in template.nodes:
        for location, expr in iter_expressions(node):
            for ref in sorted(identifiers(expr.tree) & node_ids):
                if ref == node.id:
                    raise CyclicDependency([node.id, node.id], node_id=node.id, location=location)
                graph.add_edge(node.id, ref, kind="reference")
        for dep in node.depends_on:
            if dep not in node_ids:
                raise InvalidExpression(
                    f"dependsOn names unknown node '{dep}'", node_id=node.id, location="dependsOn"
                )
            if dep == node.id:
                raise CyclicDependency([node.id, node.id], node_id=node.id, location="dependsOn")
            graph.add_edge(node.id, dep, kind="dependsOn")
        if node.group is not None:
            graph.add_edge(node.id, node.group, kind="member")

    cycle = _find_cycle(graph)
    if cycle is not None:
        raise CyclicDependency(cycle, node_id=cycle[0])

    order = topological_order(graph)
    logger.debug("Evaluation order: %s", order)
    return DependencyGraph(template=template, graph=graph, order=order)


def describe_graph(graph: DependencyGraph) -> dict[str, Any]:
    """Return a JSON-serialisable view of *graph* (order, edges, conditions)."""
    return {
        "evaluationOrder": list(graph.order),
        "edges": [
            {"from": consumer, "to": producer, "kind": data["kind"]}
            for consumer, producer, data in sorted(
                graph.graph.edges(data=True),
                key=lambda e: (graph.position(e[0]), graph.position(e[1])),
            )
        ],
        "conditions": {n: graph.condition(n).source for n in graph.order},
    }
