"""Tests for the expression evaluator and template functions."""

from typing import Any
from unittest.mock import MagicMock

import pytest

from az_condplan.errors import InvalidExpression, ReferenceUnavailable
from az_condplan.expressions.evaluator import Evaluator, NodeState, guards
from az_condplan.expressions.functions import BUILTINS, FunctionRegistry
from az_condplan.expressions.parser import parse_expression


def _eval(source: str, env: dict[str, Any] | None = None, **kwargs: Any) -> Any:
    return Evaluator(env or {}, **kwargs).evaluate(parse_expression(source), source)


def _excluded(node_id: str, condition: str) -> NodeState:
    return NodeState(
        node_id,
        condition=parse_expression(condition),
        included=False,
        view={"id": node_id, "properties": {"endpoint": "https://x"}},
    )


def _included(node_id: str, condition: str = "true", **view: Any) -> NodeState:
    return NodeState(
        node_id,
        condition=parse_expression(condition),
        included=True,
        view={"id": node_id, **view},
    )


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class TestOperators:
    """Tests for operator semantics."""

    def test_equality_is_strict(self) -> None:
        assert _eval("true == 1") is False
        assert _eval("1 == 1.0") is True
        assert _eval("'Prod' == 'prod'") is False

    def test_case_insensitive_equality(self) -> None:
        assert _eval("'Prod' =~ 'prod'") is True
        assert _eval("'Prod' !~ 'dev'") is True

    def test_logical_operators(self) -> None:
        assert _eval("a && !b", {"a": True, "b": False}) is True
        assert _eval("a || b", {"a": False, "b": False}) is False

    def test_logical_operators_need_bools(self) -> None:
        with pytest.raises(InvalidExpression, match="expects bool operands"):
            _eval("1 && true")

    def test_comparison(self) -> None:
        assert _eval("count >= 2", {"count": 3}) is True
        assert _eval("'a' < 'b'") is True

    def test_comparison_of_mixed_types(self) -> None:
        with pytest.raises(InvalidExpression, match="Cannot compare"):
            _eval("'1' < 2")

    def test_arithmetic(self) -> None:
        assert _eval("7 / 2") == 3
        assert _eval("7.0 / 2") == 3.5
        assert _eval("7 % 4 + 2 * 3 - 1") == 8

    def test_division_by_zero(self) -> None:
        with pytest.raises(InvalidExpression, match="Division by zero"):
            _eval("1 / 0")

    def test_plus_does_not_concatenate(self) -> None:
        with pytest.raises(InvalidExpression, match="concat"):
            _eval("'a' + 'b'")

    def test_not_needs_bool(self) -> None:
        with pytest.raises(InvalidExpression, match="'!' expects a bool"):
            _eval("!'yes'")

    def test_unknown_identifier(self) -> None:
        with pytest.raises(InvalidExpression, match="Unknown identifier 'nope'"):
            _eval("nope")

    def test_member_access_is_case_insensitive(self) -> None:
        env = {"obj": {"primaryEndpoints": {"Blob": "https://b"}}}
        assert _eval("obj.primaryendpoints.blob", env) == "https://b"

    def test_missing_property(self) -> None:
        with pytest.raises(InvalidExpression, match="Property 'missing' does not exist"):
            _eval("obj.missing", {"obj": {}})

    def test_index(self) -> None:
        env = {"regions": ["westeurope", "northeurope"], "tags": {"env": "dev"}}
        assert _eval("regions[1]", env) == "northeurope"
        assert _eval("tags['env']", env) == "dev"

    def test_index_out_of_range(self) -> None:
        with pytest.raises(InvalidExpression, match="out of range"):
            _eval("regions[2]", {"regions": ["a"]})

    def test_ternary_test_must_be_bool(self) -> None:
        with pytest.raises(InvalidExpression, match="Ternary test must be a bool"):
            _eval("1 ? 'a' : 'b'")

    def test_error_reports_column_and_expression(self) -> None:
        with pytest.raises(InvalidExpression) as exc_info:
            _eval("env == nope", {"env": "dev"})
        assert exc_info.value.column == 7
        assert exc_info.value.expression == "env == nope"


# ---------------------------------------------------------------------------
# Built-in functions
# ---------------------------------------------------------------------------


class TestBuiltins:
    """Tests for built-in template functions."""

    def test_concat_strings(self) -> None:
        assert _eval("concat('st', toLower(env), 1, true)", {"env": "PROD"}) == "stprod1true"

    def test_concat_arrays(self) -> None:
        assert _eval("concat(['a'], ['b'])") == ["a", "b"]

    def test_string_helpers(self) -> None:
        assert _eval("toUpper('abc')") == "ABC"
        assert _eval("string(false)") == "false"
        assert _eval("format('{0}-{1}', 'app', 2)") == "app-2"

    def test_empty_and_length(self) -> None:
        assert _eval("empty('')") is True
        assert _eval("empty(null)") is True
        assert _eval("empty(['x'])") is False
        assert _eval("length(['a', 'b'])") == 2

    def test_contains(self) -> None:
        assert _eval("contains('Production', 'prod')") is True
        assert _eval("contains(['a', 'b'], 'c')") is False

    def test_coalesce(self) -> None:
        assert _eval("coalesce(null, 'x', 'y')") == "x"

    def test_conversions(self) -> None:
        assert _eval("int('42')") == 42
        assert _eval("bool('True')") is True

    def test_conversion_failure(self) -> None:
        with pytest.raises(InvalidExpression, match="int\\(\\) cannot convert"):
            _eval("int('forty')")

    def test_union(self) -> None:
        assert _eval("union(a, b)", {"a": {"x": 1}, "b": {"y": 2}}) == {"x": 1, "y": 2}
        assert _eval("union(['a', 'b'], ['b', 'c'])") == ["a", "b", "c"]

    def test_unknown_function(self) -> None:
        with pytest.raises(InvalidExpression, match="Unknown function 'nope'"):
            _eval("nope(1)")


# ---------------------------------------------------------------------------
# External functions
# ---------------------------------------------------------------------------


class TestExternalFunctions:
    """Tests for provider-injected functions."""

    def test_cannot_override_builtin(self) -> None:
        registry = FunctionRegistry()
        with pytest.raises(ValueError, match="built-in"):
            registry.register_external("concat", lambda *a: None)

    def test_names_lists_both_kinds(self) -> None:
        registry = FunctionRegistry({"listKeys": lambda rid: {}})
        assert "listKeys" in registry.names()
        assert set(BUILTINS) <= set(registry.names())
        assert registry.is_external("listKeys")
        assert not registry.is_external("concat")

    def test_invoked_when_allowed(self) -> None:
        list_keys = MagicMock(return_value={"keys": []})
        registry = FunctionRegistry({"listKeys": list_keys})
        assert _eval("listKeys('st1')", functions=registry) == {"keys": []}
        list_keys.assert_called_once_with("st1")

    def test_not_invoked_for_excluded_node(self) -> None:
        list_keys = MagicMock(return_value={"keys": []})
        registry = FunctionRegistry({"listKeys": list_keys})
        assert _eval("listKeys('st1')", functions=registry, allow_external=False) is None
        list_keys.assert_not_called()

    def test_failure_is_wrapped(self) -> None:
        registry = FunctionRegistry({"listKeys": MagicMock(side_effect=RuntimeError("denied"))})
        with pytest.raises(InvalidExpression, match="listKeys\\(\\) failed: denied"):
            _eval("listKeys('st1')", functions=registry)


# ---------------------------------------------------------------------------
# Node references and guards
# ---------------------------------------------------------------------------


class TestNodeReferences:
    """Tests for reading other nodes, eagerly or behind a guard."""

    def test_included_node_view(self) -> None:
        nodes = {"audit": _included("audit", properties={"endpoint": "https://x"})}
        value = Evaluator({}, nodes).evaluate(parse_expression("audit.properties.endpoint"))
        assert value == "https://x"

    def test_excluded_node_is_unavailable(self) -> None:
        nodes = {"audit": _excluded("audit", "env == 'Production'")}
        with pytest.raises(ReferenceUnavailable) as exc_info:
            Evaluator({"env": "Dev"}, nodes).evaluate(parse_expression("audit.id"))
        assert exc_info.value.target == "audit"
        assert exc_info.value.guarded is False

    def test_unevaluated_node(self) -> None:
        nodes = {"audit": NodeState("audit")}
        with pytest.raises(InvalidExpression, match="has not been evaluated yet"):
            Evaluator({}, nodes).evaluate(parse_expression("audit.id"))

    def test_guard_skips_untaken_branch(self) -> None:
        nodes = {"audit": _excluded("audit", "env == 'Production'")}
        expr = parse_expression("env == 'Production' ? audit.properties.endpoint : ''")
        assert Evaluator({"env": "Dev"}, nodes).evaluate(expr) == ""

    def test_negated_guard(self) -> None:
        nodes = {"audit": _excluded("audit", "deployAudit")}
        expr = parse_expression("!deployAudit ? 'none' : audit.id")
        assert Evaluator({"deployAudit": False}, nodes).evaluate(expr) == "none"

    def test_unguarded_ternary_is_eager(self) -> None:
        nodes = {"audit": _excluded("audit", "env == 'Production'")}
        expr = parse_expression("useAudit ? audit.properties.endpoint : ''")
        with pytest.raises(ReferenceUnavailable) as exc_info:
            Evaluator({"env": "Dev", "useAudit": False}, nodes).evaluate(expr)
        assert exc_info.value.guarded is False

    def test_logical_operators_are_eager(self) -> None:
        nodes = {"audit": _excluded("audit", "deployAudit")}
        expr = parse_expression("deployAudit && audit.properties.endpoint == 'x'")
        with pytest.raises(ReferenceUnavailable):
            Evaluator({"deployAudit": False}, nodes).evaluate(expr)

    def test_guard_taking_excluded_branch_is_reported_as_guarded(self) -> None:
        # The test reads every name of the condition but is not the condition
        nodes = {"audit": _excluded("audit", "env == 'Production'")}
        expr = parse_expression("env != '' ? audit.id : ''")
        with pytest.raises(ReferenceUnavailable) as exc_info:
            Evaluator({"env": "Dev"}, nodes).evaluate(expr)
        assert exc_info.value.guarded is True

    def test_ternary_with_one_unguarded_read_is_eager(self) -> None:
        nodes = {
            "primary": _included("primary", "usePrimary", properties={"endpoint": "https://p"}),
            "replica": _excluded("replica", "useReplica"),
        }
        expr = parse_expression(
            "usePrimary ? primary.properties.endpoint : replica.properties.endpoint"
        )
        with pytest.raises(ReferenceUnavailable) as exc_info:
            Evaluator({"usePrimary": True, "useReplica": False}, nodes).evaluate(expr)
        assert exc_info.value.target == "replica"
        assert exc_info.value.guarded is False

    def test_nested_guards_stay_lazy(self) -> None:
        nodes = {
            "primary": _excluded("primary", "usePrimary"),
            "replica": _excluded("replica", "useReplica"),
        }
        expr = parse_expression(
            "usePrimary ? primary.id : (useReplica ? replica.id : 'none')"
        )
        env = {"usePrimary": False, "useReplica": False}
        assert Evaluator(env, nodes).evaluate(expr) == "none"

    def test_test_excluding_the_node_is_not_a_guard(self) -> None:
        nodes = {"audit": _excluded("audit", "env == 'Production'")}
        expr = parse_expression("env == 'Development' ? audit.id : ''")
        with pytest.raises(ReferenceUnavailable) as exc_info:
            Evaluator({"env": "Development"}, nodes).evaluate(expr)
        assert exc_info.value.guarded is False

    def test_unconditional_node_is_never_guarded(self) -> None:
        nodes = {"web": _included("web", name="app1")}
        expr = parse_expression("flag ? web.name : 'none'")
        assert Evaluator({"flag": True}, nodes).evaluate(expr) == "app1"


class TestGuards:
    """Tests for the guard rule."""

    def test_same_condition(self) -> None:
        state = NodeState("a", condition=parse_expression("env == 'Production'"))
        assert guards(parse_expression("env == 'Production'"), state)

    def test_negated_condition(self) -> None:
        state = NodeState("a", condition=parse_expression("deploy"))
        assert guards(parse_expression("!deploy"), state)

    def test_test_reading_all_condition_names(self) -> None:
        state = NodeState("a", condition=parse_expression("deploy && env == 'Production'"))
        assert guards(parse_expression("deploy && env != 'Dev' && other"), state)

    def test_test_missing_a_condition_name(self) -> None:
        state = NodeState("a", condition=parse_expression("deploy && env == 'Production'"))
        assert not guards(parse_expression("deploy"), state)

    def test_constant_condition_has_no_guard_by_names(self) -> None:
        state = NodeState("a", condition=parse_expression("false"))
        assert not guards(parse_expression("flag"), state)

    def test_branch_where_test_rules_the_node_out(self) -> None:
        state = NodeState("a", condition=parse_expression("env == 'Production'"))
        test = parse_expression("env == 'Development'")
        assert not guards(test, state, branch=True)
        assert guards(test, state, branch=False)
