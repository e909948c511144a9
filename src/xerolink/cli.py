"""Operator CLI."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from xerolink.config.settings import ConfigurationError, Settings
from xerolink.core.logging import setup_logging
from xerolink.exceptions import XeroLinkError
from xerolink.service import XeroCoordinator


T = TypeVar("T")

app = typer.Typer(name="xerolink", help="Multi-tenant Xero access coordinator")
console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to a TOML configuration file")
]
UserOption = Annotated[str, typer.Option("--user", "-u", help="User id owning the grant")]
TenantOption = Annotated[
    str | None, typer.Option("--tenant", "-t", help="Tenant id (defaults to the selection)")
]


def _load_settings(config: Path | None) -> Settings:
    try:
        settings = Settings.from_config(config_path=config)
    except (ConfigurationError, OSError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2) from e
    setup_logging(settings.server.log_level, json_logs=settings.server.log_json)
    return settings


def _run(
    config: Path | None,
    operation: Callable[[XeroCoordinator], Awaitable[T]],
) -> T:
    """Run ``operation`` against an initialized coordinator, reporting failures."""
    settings = _load_settings(config)

    async def _main() -> T:
        async with XeroCoordinator(settings) as coordinator:
            return await operation(coordinator)

    try:
        return asyncio.run(_main())
    except XeroLinkError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e.message}")
        if e.reauthenticate:
            console.print("[yellow]Reconnect the Xero organisation to continue.[/yellow]")
        raise typer.Exit(1) from e


async def _resolve_tenant(coordinator: XeroCoordinator, user: str, tenant: str | None) -> str:
    if tenant:
        return tenant
    return (await coordinator.ensure_valid_token(user)).tenant_id


@app.command()
def sync(
    user: UserOption,
    tenant: TenantOption = None,
    run_id: Annotated[
        str | None, typer.Option("--run-id", help="Scope idempotency keys to this run")
    ] = None,
    ensure_tasks: Annotated[
        bool | None,
        typer.Option("--ensure-tasks/--no-ensure-tasks", help="Create missing required tasks"),
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Sync projects and their tasks into local storage."""

    async def operation(coordinator: XeroCoordinator) -> Any:
        tenant_id = await _resolve_tenant(coordinator, user, tenant)
        return await coordinator.sync_projects_for_tenant(
            tenant_id, user, run_id=run_id, ensure_required=ensure_tasks
        )

    result = _run(config, operation)

    table = Table(title=f"Sync {result.tenant_id}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Pages", str(result.pages_fetched))
    table.add_row("Succeeded", f"[green]{result.succeeded_count}[/green]")
    table.add_row("Failed", f"[red]{result.failed_count}[/red]" if result.failed_count else "0")
    table.add_row("Tasks", str(result.child_item_count))
    table.add_row("Duration", f"{result.duration_ms} ms")
    if result.cancelled:
        table.add_row("Cancelled", "[yellow]yes[/yellow]")
    if result.truncated:
        table.add_row("Truncated", "[yellow]page limit reached[/yellow]")
    console.print(table)

    for error in result.per_record_errors:
        console.print(f"  [red]✗[/red] {error.name or error.remote_id}: {error.error}")
    if not result.success:
        raise typer.Exit(1)


@app.command()
def verify(
    user: UserOption,
    project_id: Annotated[
        str | None, typer.Option("--project", "-p", help="Verify a single project")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Projects to check")] = 10,
    tenant: TenantOption = None,
    config: ConfigOption = None,
) -> None:
    """Compare stored tasks with Xero and list the differences."""

    async def operation(coordinator: XeroCoordinator) -> Any:
        tenant_id = await _resolve_tenant(coordinator, user, tenant)
        if project_id:
            return await coordinator.verify_project_sync(tenant_id, user, project_id)
        return await coordinator.verify_all_projects(tenant_id, user, limit=limit)

    report = _run(config, operation)

    console.print(
        f"Checked [bold]{report.records_checked}[/bold] projects, "
        f"[bold]{report.records_with_mismatches}[/bold] with differences, "
        f"[bold]{report.total_mismatches}[/bold] mismatches"
    )
    if not report.mismatches:
        return

    table = Table(box=box.SIMPLE)
    table.add_column("Project", style="cyan")
    table.add_column("Task")
    table.add_column("Field", style="magenta")
    table.add_column("Stored")
    table.add_column("Xero")
    for mismatch in report.mismatches:
        table.add_row(
            mismatch.project_code or mismatch.remote_id,
            mismatch.child_name or mismatch.child_id,
            mismatch.field,
            str(mismatch.local_value),
            str(mismatch.remote_value),
        )
    console.print(table)


@app.command()
def usage(
    user: UserOption,
    tenant: TenantOption = None,
    config: ConfigOption = None,
) -> None:
    """Show this process's view of the tenant's quota."""

    async def operation(coordinator: XeroCoordinator) -> Any:
        tenant_id = await _resolve_tenant(coordinator, user, tenant)
        return tenant_id, coordinator.api_usage(tenant_id)

    tenant_id, state = _run(config, operation)
    table = Table(title=f"API usage {tenant_id}", box=box.ROUNDED)
    table.add_column("Window", style="cyan")
    table.add_column("Remaining", justify="right")
    table.add_row("Minute", str(state.minute_remaining))
    table.add_row("Day", str(state.daily_remaining))
    console.print(table)


@app.command("select-tenant")
def select_tenant(
    user: UserOption,
    tenant_id: Annotated[str, typer.Argument(help="Tenant id to select")],
    config: ConfigOption = None,
) -> None:
    """Choose which tenant the user acts on by default."""

    async def operation(coordinator: XeroCoordinator) -> None:
        await coordinator.select_tenant(user, tenant_id)

    _run(config, operation)
    console.print(f"[green]Selected tenant {tenant_id} for {user}[/green]")


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address")] = None,
    port: Annotated[int | None, typer.Option(help="Port")] = None,
    config: ConfigOption = None,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from xerolink.api.app import create_app

    settings = _load_settings(config)
    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
