"""Pydantic models for the deployment plan.

Request models describe what to plan (a template document plus parameter
values).  Response models describe the ordered include/skip decisions handed
to a provider, or the structured error that stopped planning.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from az_condplan.errors import PlanningError

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PlanRequest(BaseModel):
    template: dict[str, Any]
    parameters: dict[str, Any] = Field(default_factory=dict)
    strictNameConflicts: bool | None = None


class ExpressionRequest(BaseModel):
    expression: str
    parameters: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PlanOperation(BaseModel):
    step: int
    nodeId: str
    kind: Literal["resource", "module"]
    action: Literal["create", "createModule", "skip"]
    decision: Literal["include", "skip"]
    resourceType: str
    name: str
    condition: str
    skipReason: Literal["condition", "module"] | None = None
    dependsOn: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    members: list[PlanOperation] = Field(default_factory=list)

    @property
    def included(self) -> bool:
        return self.decision == "include"


class PlanSummary(BaseModel):
    totalNodes: int
    included: int
    skipped: int


class DeploymentPlan(BaseModel):
    operations: list[PlanOperation] = Field(default_factory=list)
    evaluationOrder: list[str] = Field(default_factory=list)
    summary: PlanSummary
    parameters: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    generatedAt: str | None = None

    def decisions(self) -> dict[str, Literal["include", "skip"]]:
        """Flatten operations (module members included) to ``{nodeId: decision}``."""
        out: dict[str, Literal["include", "skip"]] = {}
        for op in self.operations:
            out[op.nodeId] = op.decision
            for member in op.members:
                out[member.nodeId] = member.decision
        return out


class PlanError(BaseModel):
    code: str
    message: str
    nodeId: str | None = None
    location: str | None = None
    expression: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class PlanErrorResponse(BaseModel):
    error: PlanError


class GraphResponse(BaseModel):
    evaluationOrder: list[str]
    edges: list[dict[str, str]] = Field(default_factory=list)
    conditions: dict[str, str] = Field(default_factory=dict)


def plan_error(exc: PlanningError) -> PlanErrorResponse:
    """Wrap a planning error in its structured response body."""
    data = exc.to_dict()
    core = {k: data.pop(k) for k in ("code", "message", "nodeId", "location", "expression")}
    return PlanErrorResponse(error=PlanError(**core, details=data))
