"""Deployment providers.

A provider is the external collaborator that actually creates resources and
offers capabilities such as key retrieval.  Any pip-installable package can
contribute one by registering an ``az_condplan.providers`` entry point that
points to an object satisfying the :class:`DeploymentProvider` protocol.

Example ``pyproject.toml`` entry::

    [project.entry-points."az_condplan.providers"]
    arm = "az_condplan_arm:provider"

The planner never calls a provider for a skipped node: external functions
are not invoked while evaluating excluded nodes, and :func:`execute_plan`
only applies included operations.
"""

import importlib.metadata
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from az_condplan.errors import UnknownProvider
from az_condplan.expressions.functions import FunctionRegistry
from az_condplan.models.plan import DeploymentPlan, PlanOperation

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "az_condplan.providers"


@runtime_checkable
class DeploymentProvider(Protocol):
    """Protocol that every provider must satisfy."""

    name: str
    version: str

    def functions(self) -> dict[str, Callable[..., Any]]: ...
    def apply(self, operation: PlanOperation) -> dict[str, Any]: ...


@dataclass
class DryRunProvider:
    """Records operations without side effects."""

    name: str = "dry-run"
    version: str = "1"
    applied: list[PlanOperation] = field(default_factory=list)

    def functions(self) -> dict[str, Callable[..., Any]]:
        return {"listKeys": self._list_keys}

    def apply(self, operation: PlanOperation) -> dict[str, Any]:
        self.applied.append(operation)
        return {"nodeId": operation.nodeId, "name": operation.name, "status": "dry-run"}

    @staticmethod
    def _list_keys(resource_id: Any, *_: Any) -> dict[str, Any]:
        return {"keys": [{"keyName": "key1", "value": f"<dry-run key for {resource_id}>"}]}


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_providers() -> dict[str, DeploymentProvider]:
    """Return the built-in provider plus all entry-point providers, by name."""
    providers: dict[str, DeploymentProvider] = {}
    builtin = DryRunProvider()
    providers[builtin.name] = builtin
    for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP):
        try:
            obj = ep.load()
        except Exception:
            logger.exception("Failed to load provider entry point: %s", ep.name)
            continue
        if not isinstance(obj, DeploymentProvider):
            logger.warning(
                "Provider entry point '%s' does not satisfy DeploymentProvider protocol, skipped",
                ep.name,
            )
            continue
        if obj.name in providers:
            logger.warning("Provider '%s' is already registered, skipped", obj.name)
            continue
        providers[obj.name] = obj
        logger.info("Loaded provider: %s v%s", obj.name, obj.version)
    return providers


def get_provider(name: str) -> DeploymentProvider:
    providers = discover_providers()
    if name not in providers:
        raise UnknownProvider(name, sorted(providers))
    return providers[name]


def function_registry(provider: DeploymentProvider | None) -> FunctionRegistry:
    """Build a function registry exposing *provider*'s external capabilities."""
    return FunctionRegistry(provider.functions() if provider is not None else None)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def execute_plan(plan: DeploymentPlan, provider: DeploymentProvider) -> list[dict[str, Any]]:
    """Apply every included operation of *plan* in order.

    Modules are applied as a unit: the module operation first, then its
    included members.  Skipped operations never reach the provider.
    """
    results: list[dict[str, Any]] = []
    for op in plan.operations:
        if not op.included:
            logger.info("Skipping %s (%s)", op.nodeId, op.skipReason)
            continue
        for target in (op, *(m for m in op.members if m.included)):
            logger.info("Applying %s %s via %s", target.action, target.nodeId, provider.name)
            try:
                results.append(provider.apply(target))
            except Exception:
                logger.exception("Provider %s failed on %s", provider.name, target.nodeId)
                raise
    return results
