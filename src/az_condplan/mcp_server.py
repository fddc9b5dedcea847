"""MCP server for the conditional deployment planner.

Exposes planning and expression evaluation as MCP tools so that AI agents
can check a template before it is deployed.

Run with:
    az-condplan mcp            # stdio transport (default)
    az-condplan mcp --sse      # SSE transport on port 8080

Or add to your MCP client config (e.g. Claude Desktop):
    {
      "mcpServers": {
        "az-condplan": {
          "command": "az-condplan",
          "args": ["mcp"]
        }
      }
    }
"""

import json
import logging
from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from az_condplan.errors import PlanningError
from az_condplan.expressions.evaluator import Evaluator
from az_condplan.expressions.parser import parse_expression
from az_condplan.models.plan import plan_error
from az_condplan.providers import get_provider
from az_condplan.services.deployment_planner import plan_document
from az_condplan.settings import get_settings

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "az-condplan",
    instructions=(
        "Conditional deployment planning tools. "
        "Use plan_template to find out which resources of an ARM/Bicep-style "
        "template would be deployed or skipped for given parameter values, and "
        "to detect unguarded references to conditional resources, duplicate "
        "names and dependency cycles before deploying."
    ),
)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def plan_template(
    template: Annotated[
        str,
        Field(description="Template document as a JSON string."),
    ],
    parameters: Annotated[
        dict[str, Any] | None,
        Field(description="Parameter values keyed by parameter name."),
    ] = None,
) -> str:
    """Plan a conditional deployment.

    Returns the ordered operations with an include/skip decision per resource
    or module.  If planning fails, returns ``{"error": {...}}`` with the error
    code, the offending node and the expression location.
    """
    try:
        document = json.loads(template)
    except json.JSONDecodeError as exc:
        return json.dumps({"error": {"code": "TemplateError", "message": str(exc)}})
    settings = get_settings()
    try:
        result = plan_document(
            document,
            parameters or {},
            settings=settings,
            provider=get_provider(settings.default_provider),
        )
    except PlanningError as exc:
        return json.dumps(plan_error(exc).model_dump(), indent=2)
    return json.dumps(result.model_dump(mode="json"), indent=2)


@mcp.tool()
def evaluate_expression(
    expression: Annotated[
        str,
        Field(description="Expression without surrounding brackets, e.g. \"env == 'Prod'\"."),
    ],
    parameters: Annotated[
        dict[str, Any] | None,
        Field(description="Values for the identifiers used by the expression."),
    ] = None,
) -> str:
    """Evaluate a single template expression against literal values."""
    try:
        value = Evaluator(parameters or {}).evaluate(parse_expression(expression), expression)
    except PlanningError as exc:
        return json.dumps(plan_error(exc).model_dump(), indent=2)
    return json.dumps({"expression": expression, "value": value}, indent=2)
