"""Tests for the dependency graph builder."""

from typing import Any

import pytest

from az_condplan.errors import CyclicDependency, InvalidExpression, NodeLimitExceeded
from az_condplan.services.graph_builder import (
    build_dependency_graph,
    describe_graph,
    iter_expressions,
)
from az_condplan.template_loader import compile_template


def _resource(node_id: str, **fields: Any) -> dict[str, Any]:
    return {"id": node_id, "type": "Microsoft.Test/things", "name": node_id, **fields}


class TestBuildDependencyGraph:
    """Tests for build_dependency_graph."""

    def test_producers_before_consumers(self, audit_document) -> None:
        # webApp is declared after the account it reads; swap them
        audit_document["resources"].reverse()
        graph = build_dependency_graph(compile_template(audit_document))
        assert graph.order == ["auditStorageAccount", "webApp"]
        assert graph.producers("webApp") == ["auditStorageAccount"]
        assert graph.consumers("auditStorageAccount") == ["webApp"]

    def test_ties_follow_declaration_order(self) -> None:
        template = compile_template(
            {"resources": [_resource("c"), _resource("a"), _resource("b")]}
        )
        assert build_dependency_graph(template).order == ["c", "a", "b"]

    def test_order_is_deterministic(self) -> None:
        doc = {
            "resources": [
                _resource("web", properties={"plan": "[plan.id]", "db": "[db.id]"}),
                _resource("db"),
                _resource("plan"),
            ]
        }
        orders = {tuple(build_dependency_graph(compile_template(doc)).order) for _ in range(5)}
        assert orders == {("db", "plan", "web")}

    def test_depends_on_edges(self) -> None:
        template = compile_template(
            {"resources": [_resource("a", dependsOn=["b"]), _resource("b")]}
        )
        graph = build_dependency_graph(template)
        assert graph.order == ["b", "a"]
        assert graph.graph.edges["a", "b"]["kind"] == "dependsOn"

    def test_unknown_depends_on(self) -> None:
        template = compile_template({"resources": [_resource("a", dependsOn=["ghost"])]})
        with pytest.raises(InvalidExpression, match="unknown node 'ghost'"):
            build_dependency_graph(template)

    def test_module_member_edges(self, monitoring_document) -> None:
        graph = build_dependency_graph(compile_template(monitoring_document))
        assert graph.order == ["monitoring", "workspace", "app", "alertRule"]
        assert graph.graph.edges["workspace", "monitoring"]["kind"] == "member"
        assert graph.graph.edges["alertRule", "workspace"]["kind"] == "reference"

    def test_cycle(self) -> None:
        template = compile_template(
            {
                "resources": [
                    _resource("a", properties={"x": "[b.id]"}),
                    _resource("b", properties={"x": "[a.id]"}),
                ]
            }
        )
        with pytest.raises(CyclicDependency) as exc_info:
            build_dependency_graph(template)
        assert set(exc_info.value.cycle) == {"a", "b"}
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_self_reference(self) -> None:
        template = compile_template({"resources": [_resource("a", name="[concat(a.id, 'x')]")]})
        with pytest.raises(CyclicDependency) as exc_info:
            build_dependency_graph(template)
        assert exc_info.value.cycle == ["a", "a"]
        assert exc_info.value.location == "name"

    def test_node_limit(self) -> None:
        template = compile_template({"resources": [_resource(f"r{i}") for i in range(4)]})
        with pytest.raises(NodeLimitExceeded, match="4 nodes, limit is 3"):
            build_dependency_graph(template, max_nodes=3)

    def test_node_limit_is_inclusive(self) -> None:
        template = compile_template({"resources": [_resource(f"r{i}") for i in range(3)]})
        assert len(build_dependency_graph(template, max_nodes=3).order) == 3

    def test_condition_is_carried(self, audit_document) -> None:
        graph = build_dependency_graph(compile_template(audit_document))
        assert graph.condition("auditStorageAccount").source == "[env == 'Production']"
        assert graph.condition("webApp").source == "true"


class TestIterExpressions:
    """Tests for iter_expressions."""

    def test_locations(self, audit_document) -> None:
        node = compile_template(audit_document).node("auditStorageAccount")
        locations = [location for location, _ in iter_expressions(node)]
        assert locations == [
            "condition",
            "name",
            "properties.location",
            "properties.primaryEndpoints.blob",
        ]


class TestDescribeGraph:
    """Tests for describe_graph."""

    def test_view(self, audit_document) -> None:
        view = describe_graph(build_dependency_graph(compile_template(audit_document)))
        assert view["evaluationOrder"] == ["auditStorageAccount", "webApp"]
        assert view["edges"] == [
            {"from": "webApp", "to": "auditStorageAccount", "kind": "reference"}
        ]
        assert view["conditions"]["auditStorageAccount"] == "[env == 'Production']"
