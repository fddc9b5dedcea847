"""Unified CLI for az-condplan.

Provides the subcommands:
    az-condplan plan   – plan a template and print the include/skip decisions
    az-condplan graph  – print the evaluation order and reference edges
    az-condplan apply  – plan, then hand included operations to a provider
    az-condplan web    – run the web API (FastAPI + uvicorn)
    az-condplan mcp    – run the MCP server (stdio or SSE transport)
"""

import json
import logging
from typing import Any

import click

from az_condplan import __version__
from az_condplan.errors import PlanningError
from az_condplan.models.plan import DeploymentPlan, PlanOperation, plan_error
from az_condplan.settings import get_settings

_verbose_option = click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging.",
)
_template_argument = click.argument(
    "template_path", metavar="TEMPLATE", type=click.Path(exists=True, dir_okay=False)
)
_parameter_options = [
    click.option(
        "--param",
        "-p",
        "params",
        multiple=True,
        metavar="NAME=VALUE",
        help="Parameter value (repeatable). Overrides --parameters-file.",
    ),
    click.option(
        "--parameters-file",
        type=click.Path(exists=True, dir_okay=False),
        default=None,
        help="JSON/YAML parameters file (ARM format or flat mapping).",
    ),
]


def _with_parameters(fn: Any) -> Any:
    for option in reversed(_parameter_options):
        fn = option(fn)
    return fn


def _configure_logging(verbose: bool) -> None:
    from az_condplan.app import _setup_logging

    _setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


def _collect_parameters(params: tuple[str, ...], parameters_file: str | None) -> dict[str, Any]:
    from az_condplan.template_loader import load_parameter_values, parse_assignments

    values: dict[str, Any] = {}
    if parameters_file:
        values.update(load_parameter_values(parameters_file))
    values.update(parse_assignments(params))
    return values


def _fail(exc: PlanningError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(plan_error(exc).model_dump(), indent=2))
    else:
        click.echo(f"{click.style(f'✗ {exc.code}', fg='red', bold=True)}: {exc}", err=True)
    raise SystemExit(1)


def _echo_operation(op: PlanOperation, indent: str = "  ") -> None:
    colour = {"create": "green", "createModule": "cyan", "skip": "yellow"}[op.action]
    action = click.style(f"{op.action:<12}", fg=colour, bold=op.action != "skip")
    line = f"{indent}{op.step:>3}. {action} {op.nodeId} ({op.resourceType}) name={op.name}"
    if op.skipReason == "condition":
        line += click.style(f"  [condition false: {op.condition}]", dim=True)
    elif op.skipReason == "module":
        line += click.style("  [module skipped]", dim=True)
    click.echo(line)
    for member in op.members:
        _echo_operation(member, indent=indent + "     ")


def _echo_plan(result: DeploymentPlan) -> None:
    s = result.summary
    click.echo(
        f"✦ Plan: {click.style(str(s.included), fg='green', bold=True)} included, "
        f"{click.style(str(s.skipped), fg='yellow', bold=True)} skipped "
        f"({s.totalNodes} nodes)"
    )
    for op in result.operations:
        _echo_operation(op)
    for warning in result.warnings:
        click.echo(f"  {click.style('!', fg='yellow')} {warning}")


@click.group()
@click.version_option(version=__version__, prog_name="az-condplan")
def cli() -> None:
    """Conditional deployment template planner."""


@cli.command()
@_template_argument
@_with_parameters
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the plan as JSON.")
@click.option(
    "--permissive",
    is_flag=True,
    default=False,
    help="Only reject duplicate names that are actually included together.",
)
@_verbose_option
def plan(
    template_path: str,
    params: tuple[str, ...],
    parameters_file: str | None,
    as_json: bool,
    permissive: bool,
    verbose: bool,
) -> None:
    """Plan TEMPLATE and print the include/skip decision of every node."""
    from az_condplan.providers import get_provider
    from az_condplan.services.deployment_planner import plan_document
    from az_condplan.template_loader import load_template

    _configure_logging(verbose)
    settings = get_settings()
    try:
        result = plan_document(
            load_template(template_path),
            _collect_parameters(params, parameters_file),
            settings=settings,
            provider=get_provider(settings.default_provider),
            strict_name_conflicts=False if permissive else None,
        )
    except PlanningError as exc:
        _fail(exc, as_json)
        return
    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _echo_plan(result)


@cli.command()
@_template_argument
@_verbose_option
def graph(template_path: str, verbose: bool) -> None:
    """Print the evaluation order and reference edges of TEMPLATE."""
    from az_condplan.services.graph_builder import build_dependency_graph, describe_graph
    from az_condplan.template_loader import load_template

    _configure_logging(verbose)
    try:
        dep_graph = build_dependency_graph(
            load_template(template_path), max_nodes=get_settings().max_nodes
        )
    except PlanningError as exc:
        _fail(exc, False)
        return
    view = describe_graph(dep_graph)
    click.echo("Evaluation order:")
    for i, node_id in enumerate(view["evaluationOrder"], start=1):
        click.echo(f"  {i:>3}. {node_id}  {click.style(view['conditions'][node_id], dim=True)}")
    if view["edges"]:
        click.echo("References:")
        for edge in view["edges"]:
            click.echo(f"  {edge['from']} → {edge['to']} ({edge['kind']})")


@cli.command()
@_template_argument
@_with_parameters
@click.option("--provider", "provider_name", default=None, help="Provider name.")
@_verbose_option
def apply(
    template_path: str,
    params: tuple[str, ...],
    parameters_file: str | None,
    provider_name: str | None,
    verbose: bool,
) -> None:
    """Plan TEMPLATE, then apply the included operations through a provider."""
    from az_condplan.providers import execute_plan, get_provider
    from az_condplan.services.deployment_planner import plan_document
    from az_condplan.template_loader import load_template

    _configure_logging(verbose)
    settings = get_settings()
    try:
        provider = get_provider(provider_name or settings.default_provider)
    except PlanningError as exc:
        _fail(exc, False)
        return
    try:
        result = plan_document(
            load_template(template_path),
            _collect_parameters(params, parameters_file),
            settings=settings,
            provider=provider,
        )
    except PlanningError as exc:
        _fail(exc, False)
        return
    _echo_plan(result)
    applied = execute_plan(result, provider)
    click.echo(
        f"✦ Applied {click.style(str(len(applied)), fg='green', bold=True)} "
        f"operation(s) via {click.style(provider.name, fg='cyan')}"
    )


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default from settings).")
@click.option("--port", default=None, type=int, help="Port to listen on (default from settings).")
@_verbose_option
@click.option(
    "--reload",
    is_flag=True,
    default=False,
    help="Auto-reload on code changes (development only).",
)
def web(host: str | None, port: int | None, verbose: bool, reload: bool) -> None:
    """Run the web API."""
    import uvicorn

    from az_condplan.app import app

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    log_level = "info" if verbose else "warning"
    _configure_logging(verbose)

    url = f"http://{host}:{port}"
    click.echo(f"✦ az-condplan running at {click.style(url, fg='cyan', bold=True)}")
    click.echo(f"  API docs at {url}/docs")
    click.echo("  Press Ctrl+C to stop.\n")

    if reload:
        uvicorn.run("az_condplan.app:app", host=host, port=port, log_level=log_level, reload=True)
    else:
        uvicorn.run(app, host=host, port=port, log_level=log_level)


@cli.command()
@click.option(
    "--sse",
    is_flag=True,
    default=False,
    help="Use SSE transport instead of stdio.",
)
@click.option(
    "--port",
    default=8080,
    show_default=True,
    help="Port for SSE transport.",
)
@_verbose_option
def mcp(sse: bool, port: int, verbose: bool) -> None:
    """Run the MCP server."""
    from az_condplan.mcp_server import mcp as mcp_server

    if verbose:
        logging.basicConfig(level=logging.INFO)
    else:
        logging.basicConfig(level=logging.WARNING)

    if sse:
        mcp_server.settings.port = port
        mcp_server.run(transport="sse")
    else:
        mcp_server.run(transport="stdio")
