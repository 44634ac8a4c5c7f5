"""
DocVault CLI - Command-line interface.

Publish, resolve and garbage-collect documentation artifacts from the
terminal. Settings come from the ``DV_*`` environment variables.
"""

import logging
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from docvault.artifacts.lifecycle import ArtifactLifecycleManager
from docvault.artifacts.models import ArtifactEntry
from docvault.config import load_config
from docvault.core.exceptions import DocVaultError

app = typer.Typer(
    name="docvault",
    help="DocVault - Versioned documentation artifact storage",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for all commands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _manager() -> ArtifactLifecycleManager:
    return ArtifactLifecycleManager.from_config(load_config())


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except (DocVaultError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)


def _entry_table(title: str, entries: list[ArtifactEntry], serving: ArtifactEntry | None = None) -> Table:
    table = Table(title=title)
    table.add_column("UUID", style="cyan")
    table.add_column("Runtime", style="magenta")
    table.add_column("Timestamp")
    table.add_column("Content", justify="center")
    table.add_column("Latest", justify="center")
    table.add_column("Obsolete", justify="center")
    if serving is not None:
        table.add_column("Serving", justify="center", style="green")

    for entry in sorted(entries, key=lambda e: (e.runtime_version, e.timestamp), reverse=True):
        row = [
            entry.uuid,
            entry.runtime_version,
            entry.timestamp.isoformat(timespec="seconds"),
            "yes" if entry.has_content else "no",
            "yes" if entry.is_latest else "",
            "yes" if entry.is_obsolete else "",
        ]
        if serving is not None:
            row.append("*" if entry.uuid == serving.uuid else "")
        table.add_row(*row)
    return table


@app.command()
def publish(
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Package version"),
    source_dir: Path = typer.Argument(..., help="Directory with the generated documentation"),
    runtime_version: Optional[str] = typer.Option(
        None, "--runtime-version", "-r", help="Runtime version (default: current)"
    ),
    latest: bool = typer.Option(False, "--latest", help="Mark as the latest stable version"),
    obsolete: bool = typer.Option(False, "--obsolete", help="Mark as superseded"),
    sdk_version: Optional[str] = typer.Option(None, "--sdk-version", help="SDK used for generation"),
    generator_version: Optional[str] = typer.Option(
        None, "--generator-version", help="Generator version (enables shared assets)"
    ),
    gc: bool = typer.Option(True, "--gc/--no-gc", help="Remove obsolete generations afterwards"),
):
    """Publish a documentation tree as a new generation."""
    if not source_dir.is_dir():
        console.print(f"[red]Directory does not exist: {source_dir}[/red]")
        raise typer.Exit(1)

    files = [p for p in source_dir.rglob("*") if p.is_file()]

    with _handle_errors():
        manager = _manager()
        entry = ArtifactEntry(
            package_name=package,
            package_version=version,
            runtime_version=runtime_version or manager.runtime.current,
            is_latest=latest,
            is_obsolete=obsolete,
            sdk_version=sdk_version,
            generator_version=generator_version,
            has_content=bool(files),
            total_size=sum(p.stat().st_size for p in files),
        )
        console.print(
            Panel.fit(
                f"[bold blue]DocVault Publish[/bold blue]\n"
                f"Package: {package} {version}\n"
                f"Runtime: {entry.runtime_version}\n"
                f"Files: {len(files)}",
            )
        )
        result = manager.publish(entry, source_dir)

        console.print(
            f"[green]Published[/green] {entry.uuid}: "
            f"{result.uploaded_count} uploaded, {result.skipped_count} shared assets skipped "
            f"in {result.elapsed_seconds:.2f}s"
        )

        if gc:
            manager.schedule_gc(package, version)
            manager.run_pending_gc_task()


@app.command()
def resolve(
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Package version or 'latest'"),
):
    """Show the generation that serves a package version."""
    with _handle_errors():
        manager = _manager()
        entry = manager.resolve_serving_entry(package, version)

    if entry is None:
        console.print(f"[yellow]No documentation to serve for {package} {version}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"{package} {version}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field, value in entry.model_dump(mode="json").items():
        table.add_row(field, "" if value is None else str(value))
    table.add_row("content_prefix", entry.content_prefix)
    console.print(table)


@app.command()
def entries(
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Package version"),
    in_progress: bool = typer.Option(
        False, "--in-progress", "-i", help="List in-progress markers instead"
    ),
):
    """List the generations of a package version."""
    with _handle_errors():
        manager = _manager()
        found = manager.list_entries(package, version, in_progress=in_progress)
        serving = None if in_progress else manager.resolve_serving_entry(package, version)

    kind = "In-progress" if in_progress else "Completed"
    console.print(_entry_table(f"{kind} entries ({len(found)})", found, serving))


@app.command()
def gc(
    package: str = typer.Argument(..., help="Package name"),
    version: str = typer.Argument(..., help="Package version"),
):
    """Remove generations of obsolete runtime versions."""
    with _handle_errors():
        manager = _manager()
        count = manager.remove_obsolete(package, version)
    console.print(
        f"[green]{count} objects deleted[/green] "
        f"(runtime versions before {manager.runtime.gc_before})"
    )


@app.command()
def remove(
    package: str = typer.Argument(..., help="Package name"),
    version: Optional[str] = typer.Argument(None, help="Package version (default: all versions)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Remove every file of a package, or of one of its versions."""
    target = f"{package} {version}" if version else f"all versions of {package}"
    if not yes:
        typer.confirm(f"Remove {target}?", abort=True)

    with _handle_errors():
        manager = _manager()
        count = manager.remove_all(package, version)
    console.print(f"[green]{count} objects deleted[/green] ({target})")


@app.command("snapshot-upload")
def snapshot_upload(
    path: Path = typer.Argument(..., help="JSON file with the SDK documentation data"),
):
    """Upload the SDK snapshot of the current runtime version."""
    if not path.is_file():
        console.print(f"[red]File does not exist: {path}[/red]")
        raise typer.Exit(1)

    with _handle_errors():
        manager = _manager()
        uploaded = manager.upload_sdk_snapshot(path)
    if not uploaded:
        console.print("[red]Snapshot upload failed[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Uploaded[/green] {manager.sdk_snapshots.object_uri()}")


@app.command("snapshot-latest")
def snapshot_latest(
    current: Optional[str] = typer.Option(
        None, "--current", "-c", help="Upper bound (default: current runtime version)"
    ),
):
    """Show the newest SDK snapshot at or before a runtime version."""
    with _handle_errors():
        manager = _manager()
        found = manager.sdk_snapshots.find_latest_version_at_or_before(current)

    if found is None:
        console.print("[yellow]No snapshot found[/yellow]")
        raise typer.Exit(1)
    console.print(f"{found}\t{manager.sdk_snapshots.object_uri(found)}")


@app.command("snapshot-prune")
def snapshot_prune(
    min_age_days: Optional[int] = typer.Option(
        None, "--min-age-days", help="Minimum age of removed snapshots (default: from config)"
    ),
):
    """Remove old SDK snapshots now."""
    with _handle_errors():
        config = load_config()
        manager = ArtifactLifecycleManager.from_config(config)
        days = min_age_days if min_age_days is not None else config.snapshot_gc_min_age_days
        count = manager.sdk_snapshots.delete_old_data(min_age=timedelta(days=days))
    console.print(f"[green]{count} snapshots deleted[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
):
    """Run the documentation API."""
    import uvicorn

    from docvault.api.app import create_app

    with _handle_errors():
        config = load_config()
    uvicorn.run(create_app(config=config), host=host, port=port)


@app.command()
def version():
    """Show DocVault version."""
    from docvault import __version__

    console.print(f"DocVault v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
