"""Planning errors.

Every error is fatal to plan generation: the planner never returns a partial
plan and never retries.  Each error carries a stable ``code`` plus, where
known, the offending node identifier and the location of the expression
(field path and column) so callers can render structured diagnostics.
"""

from __future__ import annotations

from typing import Any


class PlanningError(Exception):
    """Base class for all planning errors."""

    code = "PlanningError"

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        location: str | None = None,
        expression: str | None = None,
    ) -> None:
        self.message = message
        self.node_id = node_id
        self.location = location
        self.expression = expression
        super().__init__(self._format())

    def _format(self) -> str:
        where = []
        if self.node_id:
            where.append(f"node '{self.node_id}'")
        if self.location:
            where.append(self.location)
        suffix = f" ({', '.join(where)})" if where else ""
        return f"{self.message}{suffix}"

    def at(self, *, node_id: str | None = None, location: str | None = None) -> PlanningError:
        """Fill in node id / location if not already set, and return self."""
        if node_id and not self.node_id:
            self.node_id = node_id
        if location and not self.location:
            self.location = location
        self.args = (self._format(),)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
            "location": self.location,
            "expression": self.expression,
        }


class InvalidExpression(PlanningError):
    """An expression cannot be parsed or evaluated."""

    code = "InvalidExpression"

    def __init__(self, message: str, *, column: int | None = None, **kwargs: Any) -> None:
        self.column = column
        super().__init__(message, **kwargs)

    def _format(self) -> str:
        base = super()._format()
        if self.column is not None and self.expression:
            return f"{base} at column {self.column} in '{self.expression}'"
        return base

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["column"] = self.column
        return data


class CyclicDependency(PlanningError):
    """The reference graph (or the variable graph) contains a cycle."""

    code = "CyclicDependency"

    def __init__(self, cycle: list[str], **kwargs: Any) -> None:
        self.cycle = cycle
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["cycle"] = self.cycle
        return data


class ReferenceUnavailable(PlanningError):
    """An expression read a node that is excluded from the deployment."""

    code = "ReferenceUnavailable"

    def __init__(self, target: str, *, guarded: bool = False, **kwargs: Any) -> None:
        self.target = target
        self.guarded = guarded
        super().__init__(f"Reference to excluded node '{target}' is unavailable", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["target"] = self.target
        return data


class UnguardedConditionalReference(PlanningError):
    """A reference to a conditional node was evaluated outside any guard."""

    code = "UnguardedConditionalReference"

    def __init__(self, target: str, **kwargs: Any) -> None:
        self.target = target
        super().__init__(
            f"Unguarded reference to conditional node '{target}', which is excluded; "
            f"wrap the access in a ternary testing the node's condition",
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["target"] = self.target
        return data


class DuplicateNameConflict(PlanningError):
    """Several units resolve to the same name and may be included together."""

    code = "DuplicateNameConflict"

    def __init__(self, name: str, node_ids: list[str], *, reason: str, **kwargs: Any) -> None:
        self.name = name
        self.node_ids = node_ids
        self.reason = reason
        kwargs.setdefault("node_id", node_ids[0] if node_ids else None)
        super().__init__(
            f"Duplicate resource name '{name}' declared by {', '.join(node_ids)}: {reason}",
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["name"] = self.name
        data["nodeIds"] = self.node_ids
        return data


class InvalidParameter(PlanningError):
    """A parameter value is missing, of the wrong type, or not allowed."""

    code = "InvalidParameter"


class NodeLimitExceeded(PlanningError):
    """The template declares more nodes than the configured ceiling."""

    code = "NodeLimitExceeded"

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(f"Template declares {count} nodes, limit is {limit}")


class TemplateError(PlanningError):
    """The template document cannot be read or validated."""

    code = "TemplateError"


class UnknownProvider(PlanningError):
    """No deployment provider is registered under the requested name."""

    code = "UnknownProvider"

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f"Unknown provider '{name}' (available: {', '.join(available)})")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["available"] = self.available
        return data
