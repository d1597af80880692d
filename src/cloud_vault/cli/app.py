"""Main Typer application entry point for cloud-vault CLI."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from cloud_vault import __version__
from cloud_vault.cli.config_cmd import config_app
from cloud_vault.core.config import ensure_dirs, load_config
from cloud_vault.core.exceptions import CloudVaultError
from cloud_vault.core.models import AppConfig, LogFormat, UploaderType, UploadReport
from cloud_vault.logging import setup_logging

app = typer.Typer(
    name="cloud-vault",
    help="Upload backup archives to cloud storage and prune old ones.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=True,
)

app.add_typer(config_app, name="config", help="Configuration management")

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cloud-vault {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
        ctx: typer.Context,
        version: bool = typer.Option(
            False,
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
        verbose: bool = typer.Option(
            False,
            "--verbose",
            "-v",
            help="Enable verbose (DEBUG) logging.",
        ),
        log_json: bool = typer.Option(
            False,
            "--log-json",
            help="Output logs in JSON format.",
        ),
        config_path: Path | None = typer.Option(
            None,
            "--config",
            help="Path to a config file (defaults to the platform config dir).",
            envvar="CLOUD_VAULT_CONFIG",
        ),
) -> None:
    """cloud-vault: backup uploader for Dropbox, S3, FTP/SFTP, WebDAV and Nextcloud."""
    ensure_dirs()
    level = "DEBUG" if verbose else "INFO"
    fmt = LogFormat.JSON if log_json else LogFormat.CONSOLE
    setup_logging(level=level, log_format=fmt)
    ctx.obj = config_path


def _load(ctx: typer.Context) -> AppConfig:
    try:
        config = load_config(ctx.obj)
    except CloudVaultError as exc:
        console.print(f"[bold red]✗ {exc}[/bold red]")
        raise typer.Exit(code=1)
    if config.logging.log_file:
        setup_logging(
            level=config.logging.level,
            log_file=config.logging.log_file,
            log_format=config.logging.format,
        )
    return config


def _print_report(title: str, report: UploadReport) -> None:
    table = Table(title=title)
    table.add_column("Backend", style="cyan")
    table.add_column("Status")
    table.add_column("Pruned", justify="right")
    table.add_column("Details")

    for backend, result in report.results.items():
        status = "[green]✓ ok[/green]" if result.ok else f"[red]✗ {result.error_kind}[/red]"
        details = result.message or ""
        if result.prune_error:
            details = f"[yellow]prune failed: {result.prune_error}[/yellow]"
        table.add_row(backend, status, str(len(result.pruned)), details)

    console.print(table)


# ──────────────────── upload / test ──────────────────────


@app.command("upload")
def upload(
        ctx: typer.Context,
        file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup archive to upload."),
        category: str = typer.Option("", "--category", "-c", help="Remote sub-folder for this backup."),
) -> None:
    """Upload a backup archive to every enabled backend.

    Examples:
        cloud-vault upload ./site-2024-05-01.zip --category site
    """
    from cloud_vault.orchestrator import UploadOrchestrator

    config = _load(ctx)
    try:
        with console.status(f"[bold blue]Uploading {file.name}..."):
            report = UploadOrchestrator(config).upload(file, category)
    except CloudVaultError as exc:
        console.print(f"[bold red]✗ {exc}[/bold red]")
        raise typer.Exit(code=1)

    _print_report(f"Upload: {file.name}", report)
    if not report.success:
        console.print(f"[bold red]✗ Failed: {', '.join(report.failed_backends)}[/bold red]")
        raise typer.Exit(code=1)
    console.print("[bold green]✓ Upload completed on all backends[/bold green]")


@app.command("test")
def test_backends(ctx: typer.Context) -> None:
    """Upload and delete a small file on every enabled backend."""
    from cloud_vault.orchestrator import UploadOrchestrator

    config = _load(ctx)
    try:
        with console.status("[bold blue]Testing backends..."):
            report = UploadOrchestrator(config).test()
    except CloudVaultError as exc:
        console.print(f"[bold red]✗ {exc}[/bold red]")
        raise typer.Exit(code=1)

    _print_report("Backend test", report)
    if not report.success:
        raise typer.Exit(code=1)


# ──────────────────── list / download ────────────────────


@app.command("list")
def list_files(
        ctx: typer.Context,
        folder: str = typer.Argument("", help="Folder relative to the remote directory."),
        backend: UploaderType = typer.Option(..., "--backend", "-b", help="Backend to query."),
) -> None:
    """List backups stored on one backend."""
    from cloud_vault.orchestrator import UploadOrchestrator

    config = _load(ctx)
    uploader = UploadOrchestrator(config).open(backend)
    try:
        files = uploader.list_files(folder)
        failed = uploader.is_error_while_uploading
    finally:
        uploader.close()

    if failed:
        console.print(f"[bold red]✗ Listing {backend.value} failed[/bold red]")
        raise typer.Exit(code=1)
    if not files:
        console.print("[yellow]No files found.[/yellow]")
        return

    table = Table(title=f"{uploader.name}: {folder or '/'}")
    table.add_column("#", justify="right")
    table.add_column("Path", style="cyan")
    for i, path in enumerate(files, 1):
        table.add_row(str(i), path)
    console.print(table)


@app.command("download")
def download(
        ctx: typer.Context,
        remote_path: str = typer.Argument(..., help="File path relative to the remote directory."),
        category: str = typer.Option("", "--category", "-c", help="Local sub-folder to write into."),
        backend: UploaderType = typer.Option(..., "--backend", "-b", help="Backend to download from."),
) -> None:
    """Download one backup into the local backup directory."""
    from cloud_vault.orchestrator import UploadOrchestrator

    config = _load(ctx)
    uploader = UploadOrchestrator(config).open(backend)
    try:
        local_path = uploader.download_file(remote_path, category)
    finally:
        uploader.close()

    if local_path is None:
        console.print(f"[bold red]✗ Download from {backend.value} failed[/bold red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Downloaded to: {local_path}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
