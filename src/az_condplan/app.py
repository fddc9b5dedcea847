"""az-condplan – FastAPI web application.

REST API over the conditional deployment planner: submit a template document
and parameter values, get back the ordered include/skip plan or a structured
planning error.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from az_condplan import __version__
from az_condplan.errors import PlanningError
from az_condplan.expressions.evaluator import Evaluator
from az_condplan.expressions.parser import parse_expression
from az_condplan.models.plan import (
    DeploymentPlan,
    ExpressionRequest,
    GraphResponse,
    PlanRequest,
    plan_error,
)
from az_condplan.providers import get_provider
from az_condplan.services.deployment_planner import plan_document
from az_condplan.services.graph_builder import build_dependency_graph, describe_graph
from az_condplan.settings import get_settings
from az_condplan.template_loader import compile_template

app = FastAPI(
    title="az-condplan API",
    version=__version__,
    description=(
        "REST API for the conditional deployment planner. "
        "Evaluates template conditions and property expressions, orders "
        "resources and modules by their references, and returns a "
        "deterministic include/skip plan."
    ),
    license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Colored logging (reuse uvicorn's formatter)
# ---------------------------------------------------------------------------


def _setup_logging(level: int = logging.WARNING) -> None:
    """Configure the root ``az_condplan`` logger with uvicorn-style colours."""
    from uvicorn.logging import DefaultFormatter

    handler = logging.StreamHandler()
    handler.setFormatter(
        DefaultFormatter(fmt="%(levelprefix)s %(name)s - %(message)s", use_colors=True)
    )
    app_logger = logging.getLogger("az_condplan")
    app_logger.handlers = [handler]
    app_logger.setLevel(level)
    app_logger.propagate = False


_setup_logging()
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(PlanningError)
async def _planning_error_handler(_request: Request, exc: PlanningError) -> JSONResponse:
    """Planning errors are the caller's problem: report them as 422."""
    logger.info("Planning failed: %s", exc)
    return JSONResponse(plan_error(exc).model_dump(), status_code=422)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Meta"], summary="Health check")
async def health() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


@app.post(
    "/api/plan",
    tags=["Planning"],
    summary="Plan a conditional deployment",
    response_model=DeploymentPlan,
)
async def plan(body: PlanRequest) -> JSONResponse:
    """Plan a template with the given parameter values.

    Every node's condition and properties are evaluated; the response lists
    the units in dependency order with an include/skip decision each.
    Planning errors (cycles, unguarded references to skipped resources,
    duplicate names, invalid expressions or parameters) return HTTP 422.
    """
    settings = get_settings()
    result = plan_document(
        body.template,
        body.parameters,
        settings=settings,
        provider=get_provider(settings.default_provider),
        strict_name_conflicts=body.strictNameConflicts,
    )
    return JSONResponse(result.model_dump())


@app.post(
    "/api/graph",
    tags=["Planning"],
    summary="Show the dependency graph of a template",
    response_model=GraphResponse,
)
async def graph(body: PlanRequest) -> JSONResponse:
    """Return the evaluation order and reference edges of a template.

    Parameter values are not needed: no expression is evaluated.
    """
    template = compile_template(body.template)
    dep_graph = build_dependency_graph(template, max_nodes=get_settings().max_nodes)
    return JSONResponse(describe_graph(dep_graph))


@app.post("/api/evaluate", tags=["Planning"], summary="Evaluate a single expression")
async def evaluate(body: ExpressionRequest) -> JSONResponse:
    """Evaluate an expression against literal parameter values."""
    tree = parse_expression(body.expression)
    value = Evaluator(body.parameters).evaluate(tree, body.expression)
    return JSONResponse({"expression": body.expression, "value": value})
