"""Read template documents and compile them for the planner.

Templates are JSON or YAML documents::

    {
      "parameters": {"env": {"type": "string", "allowedValues": ["Development", "Production"]}},
      "variables": {"isProd": "[env == 'Production']"},
      "resources": [
        {
          "id": "auditStorageAccount",
          "type": "Microsoft.Storage/storageAccounts",
          "name": "[concat('staudit', env)]",
          "condition": "[isProd]",
          "properties": {"primaryEndpoints": {"blob": "https://staudit.blob.core.windows.net/"}}
        }
      ],
      "modules": [
        {"id": "monitoring", "name": "monitoring", "condition": "[isProd]", "resources": []}
      ]
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from az_condplan.errors import InvalidExpression, TemplateError
from az_condplan.expressions.parser import is_expression_string, parse_template_value
from az_condplan.models.template import (
    ALWAYS,
    ModuleDocument,
    Node,
    Parameter,
    PropertyValue,
    ResourceDocument,
    Template,
    TemplateDocument,
    TemplateExpression,
    Variable,
)

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def read_document(path: str | Path) -> dict[str, Any]:
    """Read a JSON or YAML document into a dict."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"Cannot read {path}: {exc}") from exc
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise TemplateError(f"Cannot parse {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TemplateError(f"{path} must contain an object at the top level")
    return data


def load_template(path: str | Path) -> Template:
    """Read and compile the template at *path*."""
    template = compile_template(read_document(path))
    logger.info("Loaded template %s (%d nodes)", path, len(template.nodes))
    return template


def load_parameter_values(path: str | Path) -> dict[str, Any]:
    """Read a parameters file.

    Both ARM parameter files (``{"parameters": {"env": {"value": "Dev"}}}``)
    and flat ``{"env": "Dev"}`` mappings are accepted.
    """
    data = read_document(path)
    params = data.get("parameters", data)
    if not isinstance(params, dict):
        raise TemplateError(f"{path}: 'parameters' must be an object")
    return {
        name: value["value"] if isinstance(value, dict) and "value" in value else value
        for name, value in params.items()
    }


def parse_assignments(assignments: list[str] | tuple[str, ...]) -> dict[str, str]:
    """Parse ``name=value`` pairs.

    Values stay strings; they are coerced to the declared parameter type
    when the environment is resolved.
    """
    values: dict[str, str] = {}
    for item in assignments:
        name, sep, raw = item.partition("=")
        if not sep or not name.strip():
            raise TemplateError(f"Invalid parameter assignment '{item}', expected name=value")
        values[name.strip()] = raw
    return values


# ---------------------------------------------------------------------------
# Compiling
# ---------------------------------------------------------------------------


def _expression(value: Any, *, node_id: str | None, location: str) -> TemplateExpression:
    source = value if isinstance(value, str) else json.dumps(value)
    try:
        tree = parse_template_value(value)
    except InvalidExpression as exc:
        raise exc.at(node_id=node_id, location=location) from None
    return TemplateExpression(tree, source)


def _condition(value: bool | str, *, node_id: str, location: str) -> TemplateExpression:
    if value is True:
        return ALWAYS
    if isinstance(value, str) and not is_expression_string(value):
        raise InvalidExpression(
            "A condition must be a boolean or an '[expression]' string",
            node_id=node_id,
            location=location,
            expression=value,
        )
    return _expression(value, node_id=node_id, location=location)


def _properties(value: Any, *, node_id: str, location: str) -> PropertyValue:
    if isinstance(value, dict):
        return {
            key: _properties(item, node_id=node_id, location=f"{location}.{key}")
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [
            _properties(item, node_id=node_id, location=f"{location}[{i}]")
            for i, item in enumerate(value)
        ]
    return _expression(value, node_id=node_id, location=location)


def _resource(doc: ResourceDocument, group: str | None = None) -> Node:
    props = {
        key: _properties(value, node_id=doc.id, location=f"properties.{key}")
        for key, value in doc.properties.items()
    }
    return Node(
        id=doc.id,
        kind="resource",
        type=doc.type,
        name=_expression(doc.name, node_id=doc.id, location="name"),
        condition=_condition(doc.condition, node_id=doc.id, location="condition"),
        properties=props,
        depends_on=tuple(doc.dependsOn),
        group=group,
    )


def _module(doc: ModuleDocument) -> list[Node]:
    module = Node(
        id=doc.id,
        kind="module",
        name=_expression(doc.name, node_id=doc.id, location="name"),
        condition=_condition(doc.condition, node_id=doc.id, location="condition"),
        depends_on=tuple(doc.dependsOn),
        members=tuple(r.id for r in doc.resources),
    )
    return [module, *(_resource(r, group=doc.id) for r in doc.resources)]


def compile_template(data: dict[str, Any] | TemplateDocument) -> Template:
    """Validate a template document and parse all of its expressions."""
    if isinstance(data, TemplateDocument):
        doc = data
    else:
        try:
            doc = TemplateDocument.model_validate(data)
        except ValidationError as exc:
            raise TemplateError(f"Invalid template: {exc}") from exc

    parameters = {}
    for name, p in doc.parameters.items():
        default = None
        if "defaultValue" in p.model_fields_set:
            default = _expression(p.defaultValue, node_id=None, location=f"parameters.{name}")
        allowed = tuple(p.allowedValues) if p.allowedValues is not None else None
        parameters[name] = Parameter(name, p.type, allowed, default)

    variables = {
        name: Variable(name, _expression(value, node_id=None, location=f"variables.{name}"))
        for name, value in doc.variables.items()
    }

    nodes: list[Node] = [_resource(r) for r in doc.resources]
    for m in doc.modules:
        nodes.extend(_module(m))

    _check_names(parameters, variables, nodes)
    return Template(parameters=parameters, variables=variables, nodes=tuple(nodes))


def _check_names(
    parameters: dict[str, Parameter], variables: dict[str, Variable], nodes: list[Node]
) -> None:
    seen: dict[str, str] = {}
    for kind, names in (
        ("parameter", list(parameters)),
        ("variable", list(variables)),
        ("node", [n.id for n in nodes]),
    ):
        for name in names:
            if name in seen:
                raise TemplateError(
                    f"Identifier '{name}' is declared as both {seen[name]} and {kind}"
                    if seen[name] != kind
                    else f"Duplicate {kind} identifier '{name}'"
                )
            seen[name] = kind
