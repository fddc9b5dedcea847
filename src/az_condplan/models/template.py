"""Template models.

Two layers:

* pydantic *document* models validate a template as read from JSON/YAML
  (camelCase keys, ARM-style ``"[expr]"`` strings left unparsed);
* frozen dataclasses describe the *compiled* template the planner works on,
  with every expression parsed once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from az_condplan.expressions.ast import TRUE, Expression

ParameterType = Literal["string", "secureString", "int", "bool", "object", "array"]

_IDENTIFIER_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

# ---------------------------------------------------------------------------
# Document models
# ---------------------------------------------------------------------------


class ParameterDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: ParameterType = "string"
    allowedValues: list[Any] | None = None
    defaultValue: Any = None
    description: str | None = None


class ResourceDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(pattern=_IDENTIFIER_PATTERN)
    type: str
    name: Any
    condition: bool | str = True
    properties: dict[str, Any] = Field(default_factory=dict)
    dependsOn: list[str] = Field(default_factory=list)


class ModuleDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(pattern=_IDENTIFIER_PATTERN)
    name: Any
    condition: bool | str = True
    resources: list[ResourceDocument] = Field(default_factory=list)
    dependsOn: list[str] = Field(default_factory=list)


class TemplateDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    parameters: dict[str, ParameterDocument] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    resources: list[ResourceDocument] = Field(default_factory=list)
    modules: list[ModuleDocument] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Compiled models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TemplateExpression:
    """A parsed expression together with the text it was written as."""

    tree: Expression
    source: str


ALWAYS = TemplateExpression(TRUE, "true")

# A property value: an expression leaf, or an object/array of property values
PropertyValue = Union[TemplateExpression, dict[str, "PropertyValue"], list["PropertyValue"]]


@dataclass(frozen=True)
class Parameter:
    name: str
    type: ParameterType = "string"
    allowed_values: tuple[Any, ...] | None = None
    default: TemplateExpression | None = None


@dataclass(frozen=True)
class Variable:
    name: str
    expression: TemplateExpression


@dataclass(frozen=True)
class Node:
    """A declared resource (``kind="resource"``) or module group (``kind="module"``).

    Module members are resources whose ``group`` names their module; the
    module itself lists them in ``members``.
    """

    id: str
    kind: Literal["resource", "module"]
    name: TemplateExpression
    type: str = "module"
    condition: TemplateExpression = ALWAYS
    properties: dict[str, PropertyValue] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    group: str | None = None
    members: tuple[str, ...] = ()

    @property
    def is_module(self) -> bool:
        return self.kind == "module"


@dataclass(frozen=True)
class Template:
    parameters: dict[str, Parameter] = field(default_factory=dict)
    variables: dict[str, Variable] = field(default_factory=dict)
    nodes: tuple[Node, ...] = ()

    def node(self, node_id: str) -> Node:
        for node in self.nodes:
            if node.id == node_id:
                return node
        raise KeyError(node_id)

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]
