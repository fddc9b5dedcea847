"""Tests for planning errors, their structured form, and settings."""

import pytest

from az_condplan.errors import (
    CyclicDependency,
    DuplicateNameConflict,
    InvalidExpression,
    PlanningError,
    UnguardedConditionalReference,
)
from az_condplan.models.plan import plan_error
from az_condplan.settings import PlannerSettings


class TestPlanningErrors:
    """Tests for error messages and locations."""

    def test_message_includes_location(self) -> None:
        err = PlanningError("boom", node_id="web", location="properties.x")
        assert str(err) == "boom (node 'web', properties.x)"

    def test_at_fills_only_missing_fields(self) -> None:
        err = PlanningError("boom", location="name")
        err.at(node_id="web", location="condition")
        assert (err.node_id, err.location) == ("web", "name")
        assert "node 'web'" in str(err)

    def test_invalid_expression_column(self) -> None:
        err = InvalidExpression("Unexpected token 'b'", column=2, expression="a b")
        assert str(err) == "Unexpected token 'b' at column 2 in 'a b'"

    def test_cycle_message(self) -> None:
        assert str(CyclicDependency(["a", "b", "a"])) == "Cyclic dependency: a -> b -> a"

    def test_subclasses_share_the_base(self) -> None:
        assert issubclass(UnguardedConditionalReference, PlanningError)
        assert UnguardedConditionalReference("audit").code == "UnguardedConditionalReference"


class TestPlanErrorResponse:
    """Tests for plan_error."""

    def test_extra_fields_go_to_details(self) -> None:
        err = DuplicateNameConflict("stshared", ["a", "b"], reason="both included")
        body = plan_error(err).model_dump()
        assert body["error"]["code"] == "DuplicateNameConflict"
        assert body["error"]["nodeId"] == "a"
        assert body["error"]["details"] == {"name": "stshared", "nodeIds": ["a", "b"]}


class TestSettings:
    """Tests for PlannerSettings."""

    def test_defaults(self) -> None:
        settings = PlannerSettings()
        assert settings.max_nodes == 800
        assert settings.strict_name_conflicts is True
        assert settings.default_provider == "dry-run"

    def test_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONDPLAN_MAX_NODES", "50")
        monkeypatch.setenv("condplan_strict_name_conflicts", "false")
        settings = PlannerSettings()
        assert settings.max_nodes == 50
        assert settings.strict_name_conflicts is False

    def test_dotenv_file(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("CONDPLAN_DEFAULT_PROVIDER=arm\n")
        assert PlannerSettings().default_provider == "arm"

    def test_max_nodes_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PlannerSettings(max_nodes=0)
