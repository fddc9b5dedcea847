"""Deployment planner – deterministic plan builder.

Turns an evaluated graph into an ordered list of operations, one per
*unit*: a top-level resource, or a whole module with its members nested
inside.  Before emitting anything it rejects duplicate names.

Every decision is traceable to the template and the parameter values: the
same input always produces the same plan.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import networkx as nx

from az_condplan.errors import CyclicDependency, DuplicateNameConflict, TemplateError
from az_condplan.expressions.ast import TRUE, render
from az_condplan.expressions.disjointness import provably_disjoint
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.expressions.parser import parse_template_value
from az_condplan.models.plan import DeploymentPlan, PlanOperation, PlanSummary
from az_condplan.models.template import ALWAYS, Node, Template, TemplateExpression
from az_condplan.providers import DeploymentProvider, function_registry
from az_condplan.services.conditional_pass import (
    EvaluatedGraph,
    EvaluatedNode,
    evaluate_conditions,
)
from az_condplan.services.environment import resolve_environment
from az_condplan.services.graph_builder import (
    DEFAULT_MAX_NODES,
    build_dependency_graph,
    topological_order,
)
from az_condplan.settings import PlannerSettings, get_settings
from az_condplan.template_loader import compile_template

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROOT_SCOPE = "(root)"

# Clusters of top-level nodes sharing a condition at least this large get a
# suggestion to move them into a module.
MODULE_SUGGESTION_THRESHOLD = 3

_REDACTED = "***"


# ---------------------------------------------------------------------------
# Module grouping
# ---------------------------------------------------------------------------


def group_nodes(
    template: Template,
    group_id: str,
    node_ids: list[str],
    *,
    condition: str | bool | None = None,
    name: str | None = None,
) -> Template:
    """Return a copy of *template* with *node_ids* moved into a new module.

    The module is gated by *condition*.  When *condition* is omitted, the
    nodes must all share the same condition; it moves to the module and the
    members become unconditional.  The planner then treats the module as one
    unit for ordering and name-conflict checks.
    """
    if group_id in {*template.node_ids, *template.parameters, *template.variables}:
        raise TemplateError(f"Identifier '{group_id}' is already declared", node_id=group_id)
    members = [template.node(n) for n in node_ids]
    if not members:
        raise ValueError("A module needs at least one member")
    for member in members:
        if member.is_module or member.group is not None:
            raise ValueError(f"'{member.id}' is not a top-level resource")

    if condition is None:
        shared = {m.condition.tree for m in members}
        if len(shared) != 1:
            raise ValueError(
                f"Nodes {', '.join(node_ids)} do not share one condition; pass condition="
            )
        module_condition = members[0].condition
        reset_member_condition = True
    else:
        module_condition = (
            ALWAYS
            if condition is True
            else TemplateExpression(parse_template_value(condition), str(condition))
        )
        reset_member_condition = False

    module = Node(
        id=group_id,
        kind="module",
        name=TemplateExpression(parse_template_value(name or group_id), name or group_id),
        condition=module_condition,
        members=tuple(node_ids),
    )
    moved = {
        m.id: replace(
            m, group=group_id, condition=ALWAYS if reset_member_condition else m.condition
        )
        for m in members
    }
    nodes: list[Node] = []
    for node in template.nodes:
        if node.id in moved:
            continue
        nodes.append(node)
    nodes.append(module)
    nodes.extend(moved[n] for n in node_ids)
    logger.info("Grouped %s into module %s", ", ".join(node_ids), group_id)
    return replace(template, nodes=tuple(nodes))


def suggest_modules(evaluated: EvaluatedGraph) -> list[str]:
    """Suggest modules for top-level nodes that share a non-trivial condition."""
    clusters: dict[str, list[str]] = defaultdict(list)
    for node_id in evaluated.order:
        node = evaluated.nodes[node_id].node
        if node.group is None and not node.is_module and node.condition.tree != TRUE:
            clusters[render(node.condition.tree)].append(node_id)
    return [
        f"Nodes {', '.join(ids)} share the condition {cond}; "
        "consider grouping them into one conditional module."
        for cond, ids in clusters.items()
        if len(ids) >= MODULE_SUGGESTION_THRESHOLD
    ]


# ---------------------------------------------------------------------------
# Name conflicts
# ---------------------------------------------------------------------------


def check_name_conflicts(evaluated: EvaluatedGraph, *, strict: bool = True) -> None:
    """Raise :class:`DuplicateNameConflict` for same-name units that may coexist.

    Units are keyed by scope (root, or the module for members) and
    case-insensitive resolved name.  More than one included unit per key
    is always a conflict.  In *strict* mode, any pair whose conditions cannot
    be proven mutually exclusive is a conflict too, whatever the current
    parameter values.
    """
    buckets: dict[tuple[str, str], list[EvaluatedNode]] = defaultdict(list)
    for node_id in evaluated.graph.template.node_ids:
        ev = evaluated.nodes[node_id]
        scope = ev.node.group or ROOT_SCOPE
        buckets[(scope, str(ev.name).lower())].append(ev)

    for (scope, _name), entries in buckets.items():
        if len(entries) < 2:
            continue
        ids = [e.id for e in entries]
        name = str(entries[0].name)
        location = None if scope == ROOT_SCOPE else f"module {scope}"
        included = [e.id for e in entries if e.included]
        if len(included) > 1:
            logger.warning("Duplicate name %s included by %s", name, included)
            raise DuplicateNameConflict(
                name, included, reason="more than one is included", location=location
            )
        if not strict:
            continue
        for i, first in enumerate(entries):
            for second in entries[i + 1 :]:
                if not provably_disjoint(first.condition, second.condition):
                    logger.warning("Duplicate name %s: %s / %s", name, first.id, second.id)
                    raise DuplicateNameConflict(
                        name,
                        [first.id, second.id],
                        reason=(
                            f"conditions {render(first.condition)} and "
                            f"{render(second.condition)} cannot be proven mutually exclusive"
                        ),
                        location=location,
                    )
        logger.debug("Same-name units %s have disjoint conditions", ids)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def unit_order(evaluated: EvaluatedGraph) -> list[str]:
    """Order top-level units, contracting module members into their module."""
    graph = evaluated.graph.graph
    unit_graph: nx.DiGraph = nx.DiGraph()
    for node_id, data in graph.nodes(data=True):
        if data["group"] is None:
            unit_graph.add_node(node_id, position=data["position"])

    def unit(node_id: str) -> str:
        return graph.nodes[node_id]["group"] or node_id

    for consumer, producer in graph.edges():
        if unit(consumer) != unit(producer):
            unit_graph.add_edge(unit(consumer), unit(producer))

    try:
        edges = nx.find_cycle(unit_graph)
    except nx.NetworkXNoCycle:
        return topological_order(unit_graph)
    cycle = [edge[0] for edge in edges]
    raise CyclicDependency(
        [*cycle, cycle[0]], node_id=cycle[0], location="module boundaries"
    )


def _operation(
    ev: EvaluatedNode, step: int, depends_on: list[str], members: list[PlanOperation]
) -> PlanOperation:
    node = ev.node
    if not ev.included:
        action = "skip"
    elif node.is_module:
        action = "createModule"
    else:
        action = "create"
    return PlanOperation(
        step=step,
        nodeId=node.id,
        kind=node.kind,
        action=action,
        decision="include" if ev.included else "skip",
        resourceType=node.type,
        name=str(ev.name),
        condition=render(ev.condition),
        skipReason=ev.skip_reason,
        dependsOn=depends_on,
        properties=ev.properties if ev.included else {},
        members=members,
    )


def _redact(template: Template, environment: Mapping[str, Any]) -> dict[str, Any]:
    return {
        name: _REDACTED if param.type == "secureString" else environment[name]
        for name, param in template.parameters.items()
    }


def build_plan(evaluated: EvaluatedGraph, *, strict_name_conflicts: bool = True) -> DeploymentPlan:
    """Emit the ordered deployment plan for an evaluated graph."""
    check_name_conflicts(evaluated, strict=strict_name_conflicts)

    graph = evaluated.graph
    units = unit_order(evaluated)
    step = 0
    operations: list[PlanOperation] = []
    for unit_id in units:
        step += 1
        unit_step = step
        member_ops: list[PlanOperation] = []
        node = evaluated.nodes[unit_id].node
        for member_id in (n for n in graph.order if n in node.members):
            step += 1
            deps = [p for p in graph.producers(member_id) if p != unit_id]
            member_ops.append(_operation(evaluated.nodes[member_id], step, deps, []))
        producers = {
            graph.graph.nodes[p]["group"] or p
            for m in (unit_id, *node.members)
            for p in graph.producers(m)
        }
        deps = sorted(producers - {unit_id}, key=units.index)
        operations.append(_operation(evaluated.nodes[unit_id], unit_step, deps, member_ops))

    included = len(evaluated.included())
    plan = DeploymentPlan(
        operations=operations,
        evaluationOrder=list(graph.order),
        summary=PlanSummary(
            totalNodes=len(graph.order),
            included=included,
            skipped=len(graph.order) - included,
        ),
        parameters=_redact(graph.template, evaluated.environment),
        warnings=suggest_modules(evaluated),
        generatedAt=datetime.now(UTC).isoformat(),
    )
    logger.info(
        "Planned %d operations (%d included, %d skipped)",
        len(operations),
        plan.summary.included,
        plan.summary.skipped,
    )
    return plan


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def plan_deployment(
    template: Template,
    parameters: Mapping[str, Any] | None = None,
    *,
    functions: FunctionRegistry | None = None,
    max_nodes: int = DEFAULT_MAX_NODES,
    strict_name_conflicts: bool = True,
) -> DeploymentPlan:
    """Plan a deployment of *template* with the given parameter values.

    Runs the whole pipeline: dependency graph (cycles are rejected before any
    expression is evaluated), environment, conditional evaluation pass and
    plan building.  Any :class:`~az_condplan.errors.PlanningError` aborts the
    plan; no partial plan is returned.
    """
    graph = build_dependency_graph(template, max_nodes=max_nodes)
    environment = resolve_environment(template, parameters or {}, functions)
    evaluated = evaluate_conditions(graph, environment, functions)
    return build_plan(evaluated, strict_name_conflicts=strict_name_conflicts)


def plan_document(
    document: dict[str, Any] | Template,
    parameters: Mapping[str, Any] | None = None,
    *,
    settings: PlannerSettings | None = None,
    provider: DeploymentProvider | None = None,
    strict_name_conflicts: bool | None = None,
) -> DeploymentPlan:
    """Plan a raw template document using the configured limits and policy.

    *provider* contributes the external functions available to expressions.
    """
    settings = settings or get_settings()
    template = document if isinstance(document, Template) else compile_template(document)
    strict = (
        settings.strict_name_conflicts if strict_name_conflicts is None else strict_name_conflicts
    )
    return plan_deployment(
        template,
        parameters,
        functions=function_registry(provider),
        max_nodes=settings.max_nodes,
        strict_name_conflicts=strict,
    )
