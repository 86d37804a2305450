"""Thin CLI wrapper for isoforge.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from isoforge import __version__
from isoforge.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="isoforge",
    help="isoforge - generate, validate and track custom Linux ISO builds",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "complete": "green",
    "complete_with_warnings": "yellow",
    "building": "blue",
    "building_iso": "blue",
    "failed": "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"isoforge version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """isoforge - generate, validate and track custom Linux ISO builds."""
    logging.basicConfig(level=get_settings().log_level)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def _session_factory(settings: Settings) -> Any:
    from isoforge.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return get_session_factory(engine)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    catalog_display = (
        str(settings.catalog_path) if settings.catalog_path else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Data directory:      {settings.data_dir}")
    console.print(f"  Artifact store:      {settings.storage_dir}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print(f"  Package catalog:     {catalog_display}")
    console.print()
    console.print("[bold]Kernel config:[/bold]")
    ai_status = "enabled" if settings.anthropic_api_key else "fallback only"
    console.print(f"  AI generation:       {ai_status}")
    console.print(f"  Model:               {settings.ai_model}")
    console.print(f"  Max tokens:          {settings.ai_max_tokens}")
    console.print(f"  Min config lines:    {settings.min_kernel_config_lines}")
    console.print()
    console.print("[bold]External runner:[/bold]")
    runner = settings.github_repo if settings.github_token else None
    console.print(f"  Repository:          {runner or '(disabled)'}")
    console.print(f"  Workflow:            {settings.github_workflow}")
    console.print(f"  Callback base URL:   {settings.public_base_url}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Job TTL (days):      {settings.job_ttl_days}")
    console.print(f"  Callback auth:       {settings.require_callback_auth}")


@app.command()
def distros(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List supported distros."""
    from isoforge.catalog import get_catalog

    catalog = get_catalog(get_settings())
    if json_output:
        _echo_json([d.model_dump() for d in catalog.distros])
        return

    table = Table(title="Supported distros")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Package manager")
    table.add_column("Base image")
    for d in catalog.distros:
        table.add_row(d.id, d.name, d.pkg_manager, d.base_image)
    console.print(table)


overlays_app = typer.Typer(help="Inspect software overlays")
app.add_typer(overlays_app, name="overlays")


@overlays_app.command("check")
def overlays_check(
    distro: Annotated[
        str,
        typer.Option("--distro", "-d", help="Target distro"),
    ] = "debian",
    overlays: Annotated[
        list[str] | None,
        typer.Option("--overlay", "-o", help="Overlay id (can be repeated)"),
    ] = None,
    custom: Annotated[
        list[str] | None,
        typer.Option("--custom", "-c", help="Custom package (can be repeated)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Dry-run how overlays and custom packages would be installed."""
    from isoforge.catalog import get_catalog
    from isoforge.catalog.resolver import validate_overlays

    catalog = get_catalog(get_settings())
    report = validate_overlays(catalog, distro, overlays or [], custom or [])
    if json_output:
        _echo_json(report)
        return

    console.print(
        f"[bold]{report['distro']}[/bold] (package manager: {report['pkg_manager']})"
    )
    for entry in report["overlays"]:
        color = {"native": "green", "script": "cyan"}.get(entry["status"], "yellow")
        console.print(f"  [{color}]{entry['id']}[/{color}]: {entry['note']}")
        if entry["packages"]:
            console.print(f"    Packages: {', '.join(entry['packages'])}")
    for entry in report["custom_software"]:
        console.print(f"  [magenta]{entry['name']}[/magenta]: {entry['note']}")


builds_app = typer.Typer(help="Run and inspect build jobs")
app.add_typer(builds_app, name="build")


def _print_job(job: dict[str, Any], show_logs: bool = False) -> None:
    color = STATUS_COLORS.get(job["status"], "white")
    tests = job["test_results"]
    console.print(f"[bold]Build {job['id']}[/bold]")
    console.print(f"  Status:       [{color}]{job['status']}[/{color}]")
    console.print(f"  Progress:     {job['progress']}%")
    console.print(f"  Target:       {job['distro']}/{job['mode']}")
    console.print(f"  AI model:     {job['ai_model']}")
    console.print(f"  Packages:     {len(job['packages'])}")
    if tests:
        console.print(f"  Validation:   {tests['passed']}/{tests['total']} passed")
    if job["image_uploaded"]:
        console.print(f"  Image:        {job['image_size']} bytes")
    if job["error"]:
        console.print(f"  [red]Error:        {job['error']}[/red]")
    if show_logs:
        console.print()
        console.print("[bold]Logs:[/bold]")
        for line in job["logs"]:
            console.print(f"  {line}", highlight=False, markup=False)


@builds_app.command("run")
def build_run(
    distro: Annotated[
        str,
        typer.Option("--distro", "-d", help="Target distro"),
    ] = "debian",
    mode: Annotated[
        str,
        typer.Option("--mode", "-m", help="Build mode (desktop or server)"),
    ] = "desktop",
    overlays: Annotated[
        list[str] | None,
        typer.Option("--overlay", "-o", help="Overlay id (can be repeated)"),
    ] = None,
    custom: Annotated[
        list[str] | None,
        typer.Option("--custom", "-c", help="Custom package (can be repeated)"),
    ] = None,
    modules: Annotated[
        list[str] | None,
        typer.Option("--module", help="Detected kernel module (can be repeated)"),
    ] = None,
    hardware_file: Annotated[
        Path | None,
        typer.Option(
            "--hardware-file",
            help="File with free-form hardware description (lspci/lsusb output)",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    ai_mode: Annotated[
        bool,
        typer.Option("--ai-mode", help="Force-enable detected modules"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Submit a build job and run its pipeline to completion.

    The external runner is triggered when configured; otherwise the job
    completes locally with the generated artifacts.
    """
    from pydantic import ValidationError

    from isoforge.builds.schema import BuildRequest
    from isoforge.builds.service import get_job_status, run_pipeline, submit_build
    from isoforge.builds.storage import ArtifactStore, ArtifactStoreError
    from isoforge.builds.trigger import build_trigger
    from isoforge.catalog import get_catalog
    from isoforge.kernel.ai import build_text_generator

    settings = get_settings()
    factory = _session_factory(settings)
    store = ArtifactStore(settings.storage_dir)
    catalog = get_catalog(settings)

    try:
        request = BuildRequest(
            distro=distro,
            mode=mode,
            hardware_raw=(
                hardware_file.read_text(encoding="utf-8") if hardware_file else ""
            ),
            ai_mode=ai_mode,
            overlays=overlays or [],
            custom_software=custom or [],
            detected_modules=modules or [],
        )
    except ValidationError as e:
        console.print(f"Invalid build request: {e}", style="red", markup=False)
        raise typer.Exit(code=2) from None

    try:
        result = submit_build(
            factory, store, request, settings, catalog, build_text_generator(settings)
        )
    except ArtifactStoreError as e:
        console.print(f"[red]Cannot create build: {e}[/red]")
        raise typer.Exit(code=1) from None

    if not json_output:
        console.print(f"[bold]Created build {result.job_id}[/bold]")
        console.print(f"  Kernel config: {result.kernel_config_lines} lines")
        console.print(f"  AI model:      {result.ai_model}")
        console.print()

    run_pipeline(
        factory, store, result.job_id, catalog, build_trigger(settings), settings
    )
    job = get_job_status(factory, store, result.job_id, settings.job_ttl_days)

    if json_output:
        _echo_json(job)
    else:
        _print_job(job)
        console.print(f"  Artifacts:    {settings.storage_dir / result.storage_prefix}")
    if job["status"] == "failed":
        raise typer.Exit(code=1)


@builds_app.command("show")
def build_show(
    job_id: Annotated[str, typer.Argument(help="Build job id")],
    logs: Annotated[
        bool,
        typer.Option("--logs", help="Include the job log"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show one build job."""
    from isoforge.builds.jobs import JobNotFoundError
    from isoforge.builds.service import get_job_status
    from isoforge.builds.storage import ArtifactStore

    settings = get_settings()
    factory = _session_factory(settings)
    try:
        job = get_job_status(
            factory, ArtifactStore(settings.storage_dir), job_id, settings.job_ttl_days
        )
    except JobNotFoundError:
        console.print(f"[red]Build not found: {job_id}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _echo_json(job)
    else:
        _print_job(job, show_logs=logs)


@builds_app.command("list")
def build_list(
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter by status"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 100,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List live build jobs, newest first."""
    from isoforge.builds.jobs import job_to_dict, list_jobs
    from isoforge.db import get_session
    from isoforge.types import JobStatus

    status_filter: JobStatus | None = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print(f"Valid values: {', '.join(s.value for s in JobStatus)}")
            raise typer.Exit(code=1) from None

    factory = _session_factory(get_settings())
    with get_session(factory) as session:
        jobs = [
            job_to_dict(j)
            for j in list_jobs(session, status=status_filter, limit=limit)
        ]

    if json_output:
        _echo_json(jobs)
        return
    if not jobs:
        console.print("[yellow]No build jobs found[/yellow]")
        return

    table = Table(title=f"{len(jobs)} build job(s)")
    table.add_column("ID")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Created")
    for job in jobs:
        color = STATUS_COLORS.get(job["status"], "white")
        table.add_row(
            job["id"],
            f"{job['distro']}/{job['mode']}",
            f"[{color}]{job['status']}[/{color}]",
            f"{job['progress']}%",
            job["created_at"],
        )
    console.print(table)


@builds_app.command("purge")
def build_purge() -> None:
    """Delete job records past their retention window.

    Artifacts in the artifact store are left in place.
    """
    from isoforge.builds.jobs import purge_expired_jobs
    from isoforge.db import get_session

    factory = _session_factory(get_settings())
    with get_session(factory) as session:
        removed = purge_expired_jobs(session)
    console.print(f"Purged {removed} expired build job(s)")


if __name__ == "__main__":
    app()
