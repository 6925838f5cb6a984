"""Command line interface for conductor."""

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ensemble_conductor.core.config.ensemble_config import EnsembleLoader
from ensemble_conductor.core.errors import ConductorError
from ensemble_conductor.core.execution.result_types import ExecutionOutput
from ensemble_conductor.services import ConductorService

console = Console()
err_console = Console(stderr=True)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True,
    )


def _parse_input(raw: str | None) -> Any:
    """Parse ``--input`` as JSON, falling back to the raw string.

    Reads stdin when no value is given and input is piped.
    """
    if raw is None:
        if sys.stdin.isatty():
            return None
        raw = sys.stdin.read().strip()
        if not raw:
            return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _load_service(ctx: click.Context) -> ConductorService:
    try:
        service = ConductorService.from_config_files()
        service.load_agent_modules(list(ctx.obj.get("agent_modules", ())))
    except ConductorError as e:
        raise click.ClickException(e.to_user_message()) from e
    if not ctx.obj.get("verbose"):
        _configure_logging(service.config.log_level)
    return service


def _display_output(result: ExecutionOutput, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    if result.status == "suspended":
        console.print(
            f"[yellow]Suspended[/yellow] after {len(result.metrics.agents)} step(s)"
        )
        if result.resume_token:
            console.print(f"Resume token: [bold]{result.resume_token}[/bold]")
    else:
        console.print("[green]Completed[/green]")

    table = Table(title=f"{result.metrics.ensemble} ({result.execution_id})")
    table.add_column("Step")
    table.add_column("Duration", justify="right")
    table.add_column("Cached")
    table.add_column("Success")
    for metric in result.metrics.agents:
        table.add_row(
            metric.name,
            f"{metric.duration:.3f}s",
            "yes" if metric.cached else "",
            "yes" if metric.success else "no",
        )
    console.print(table)

    if result.scoring is not None and result.scoring.final_score is not None:
        console.print(f"Final score: {result.scoring.final_score:.3f}")
    console.print_json(json.dumps(result.to_dict()["output"], default=str))


def _run_and_drain(
    service: ConductorService, coro: Coroutine[Any, Any, Any]
) -> Any:
    """Run ``coro``, then wait for any webhook deliveries it scheduled."""

    async def runner() -> Any:
        try:
            return await coro
        finally:
            await service.notification_manager.drain()

    return asyncio.run(runner())


def _finish(result: Any, as_json: bool) -> None:
    if result.is_err():
        error = result.error
        if as_json:
            click.echo(json.dumps({"error": error.to_dict()}, indent=2, default=str))
            sys.exit(1)
        raise click.ClickException(error.to_user_message())
    _display_output(result.value, as_json)


@click.group()
@click.version_option(package_name="ensemble-conductor")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--agents",
    "agent_modules",
    multiple=True,
    help="Python module exposing register_agents(executor); may be repeated",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, agent_modules: tuple[str, ...]) -> None:
    """Ensemble Conductor - declarative agent workflow orchestration."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["agent_modules"] = agent_modules
    if verbose:
        _configure_logging("DEBUG")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--input", "input_data", default=None, help="JSON ensemble input")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def run(ctx: click.Context, file: Path, input_data: str | None, as_json: bool) -> None:
    """Run the ensemble defined in FILE."""
    service = _load_service(ctx)
    result = _run_and_drain(
        service,
        service.executor.execute_from_yaml(
            file.read_text(encoding="utf-8"), _parse_input(input_data)
        ),
    )
    _finish(result, as_json)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def validate(ctx: click.Context, file: Path) -> None:
    """Check that FILE is a valid ensemble whose agents all exist."""
    service = _load_service(ctx)
    try:
        ensemble = EnsembleLoader().load_from_file(file)
        service.check_ensemble(ensemble)
    except ConductorError as e:
        raise click.ClickException(e.to_user_message()) from e
    console.print(
        f"[green]✓[/green] {ensemble.name} is valid ({len(ensemble.flow)} steps)"
    )


@cli.command()
@click.argument("token")
@click.option("--input", "input_data", default=None, help="JSON resume input")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def resume(
    ctx: click.Context, token: str, input_data: str | None, as_json: bool
) -> None:
    """Resume a suspended execution by its TOKEN."""
    service = _load_service(ctx)
    result = _run_and_drain(
        service,
        service.resumption_manager.resume(
            token, service.executor, _parse_input(input_data)
        ),
    )
    _finish(result, as_json)


@cli.command()
@click.argument("token")
@click.option("--actor", default=None, help="Who is approving")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def approve(ctx: click.Context, token: str, actor: str | None, as_json: bool) -> None:
    """Approve a pending human-in-the-loop step and continue."""
    service = _load_service(ctx)
    result = _run_and_drain(
        service,
        service.resumption_manager.approve(token, service.executor, actor),
    )
    _finish(result, as_json)


@cli.command()
@click.argument("token")
@click.option("--actor", default=None, help="Who is rejecting")
@click.option("--reason", default=None, help="Why the request was rejected")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def reject(
    ctx: click.Context,
    token: str,
    actor: str | None,
    reason: str | None,
    as_json: bool,
) -> None:
    """Reject a pending human-in-the-loop step and continue."""
    service = _load_service(ctx)
    result = _run_and_drain(
        service,
        service.resumption_manager.reject(token, service.executor, actor, reason),
    )
    _finish(result, as_json)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8080, type=int, help="Port to listen on")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int) -> None:
    """Start the HTTP server."""
    import uvicorn

    from ensemble_conductor.web.api import set_conductor_service
    from ensemble_conductor.web.server import create_app

    set_conductor_service(_load_service(ctx))
    console.print(f"Serving on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    cli()
