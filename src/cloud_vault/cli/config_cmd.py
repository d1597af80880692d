"""CLI config subcommands for managing cloud-vault configuration."""

from __future__ import annotations

from pathlib import Path

import click
import typer
from rich.console import Console
from rich.syntax import Syntax

from cloud_vault.core.obfuscate import obfuscate

config_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")
console = Console()


@config_app.command("init")
def config_init(
        path: Path | None = typer.Option(
            None, "--path", help="Custom config file location."
        ),
        interactive: bool = typer.Option(
            True, "--interactive/--defaults", help="Prompt for values or write defaults."
        ),
) -> None:
    """Create or update the configuration file.

    If no --path is given, writes to the default location:
      macOS:  ~/Library/Application Support/cloud-vault/config.toml
      Linux:  ~/.config/cloud-vault/config.toml
    """
    from cloud_vault.core.config import CONFIG_FILE, save_config_file
    from cloud_vault.core.models import (
        AppConfig,
        BackupStorageConfig,
        DropboxConfig,
        FTPConfig,
        NextcloudConfig,
        UploaderType,
        WebDAVConfig,
    )

    target = path or CONFIG_FILE

    if target.exists():
        overwrite = typer.confirm(f"Config already exists at {target}. Overwrite?")
        if not overwrite:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit()

    if not interactive:
        saved_path = save_config_file(AppConfig(), target)
        console.print(f"[green]✓[/green] Default config saved to: {saved_path}")
        return

    console.print("[bold]cloud-vault configuration wizard[/bold]\n")

    # ── Backup storage ──
    console.print("[bold blue]Backup Storage[/bold blue]")
    storage = BackupStorageConfig(
        remote_directory=typer.prompt("Remote backup directory", default="backups"),
        local_directory=Path(typer.prompt("Local download directory", default="./backups")),
        keep_count=typer.prompt("Backups to keep per category (-1 keeps all)", default=20, type=int),
    )

    # ── Backend ──
    console.print("\n[bold blue]Upload Backend[/bold blue]")
    backend = UploaderType(typer.prompt(
        "Backend",
        type=click.Choice([t.value for t in UploaderType]),
        default="dropbox",
    ))
    sections: dict = {"backup_storage": storage}

    if backend == UploaderType.DROPBOX:
        sections["dropbox"] = DropboxConfig(
            enabled=True,
            client_id=obfuscate(typer.prompt("App key")),
            client_secret=obfuscate(typer.prompt("App secret", hide_input=True)),
            refresh_token=obfuscate(typer.prompt("Refresh token", hide_input=True)),
        )
    elif backend == UploaderType.S3:
        from cloud_vault.core.models import S3Config

        sections["s3"] = S3Config(
            enabled=True,
            bucket=typer.prompt("S3 bucket name"),
            prefix=typer.prompt("S3 key prefix", default=""),
            region=typer.prompt("AWS region", default="us-east-1"),
        )
    elif backend == UploaderType.FTP:
        sftp = typer.confirm("Use SFTP?", default=False)
        ftp_kwargs: dict = {
            "enabled": True,
            "sftp": sftp,
            "hostname": typer.prompt("Host", default="localhost"),
            "username": typer.prompt("Username"),
        }
        ftp_kwargs["port"] = typer.prompt("Port", default=22 if sftp else 21, type=int)
        if not sftp:
            ftp_kwargs["ftps"] = typer.confirm("Use explicit TLS (FTPS)?", default=False)
        pw = typer.prompt("Password (leave empty to skip)", default="", hide_input=True)
        if pw:
            ftp_kwargs["password"] = pw
        if sftp:
            key = typer.prompt("Private key file (leave empty to skip)", default="")
            if key:
                ftp_kwargs["public_key"] = Path(key)
                passphrase = typer.prompt("Key passphrase (leave empty if none)", default="", hide_input=True)
                if passphrase:
                    ftp_kwargs["passphrase"] = passphrase
        ftp_kwargs["base_directory"] = typer.prompt("Base directory", default="")
        sections["ftp"] = FTPConfig(**ftp_kwargs)
    else:
        model = NextcloudConfig if backend == UploaderType.NEXTCLOUD else WebDAVConfig
        sections[backend.value] = model(
            enabled=True,
            hostname=typer.prompt("Account URL (e.g. https://cloud.example.com/remote.php/dav/files/me)"),
            username=typer.prompt("Username"),
            password=typer.prompt("Password", hide_input=True),
        )

    # ── Save ──
    saved_path = save_config_file(AppConfig(**sections), target)
    console.print(f"\n[green]✓[/green] Config saved to: {saved_path}")
    console.print("  File permissions set to 600 (owner-only read/write).")


@config_app.command("show")
def config_show(
        path: Path | None = typer.Option(
            None, "--path", help="Custom config file location."
        ),
) -> None:
    """Display the current configuration."""
    from cloud_vault.core.config import CONFIG_FILE

    target = path or CONFIG_FILE

    if not target.exists():
        console.print(
            f"[yellow]No config file found at {target}.[/yellow]\n"
            f"Run [bold]cloud-vault config init[/bold] to create one."
        )
        raise typer.Exit()

    content = target.read_text()
    syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
    console.print(f"[bold]Config: {target}[/bold]\n")
    console.print(syntax)


@config_app.command("path")
def config_path() -> None:
    """Show config and data directory paths."""
    from cloud_vault.core.config import CONFIG_DIR, CONFIG_FILE, DATA_DIR, LOG_DIR

    console.print("[bold]cloud-vault paths:[/bold]")
    console.print(f"  Config dir:    {CONFIG_DIR}")
    console.print(f"  Config file:   {CONFIG_FILE}")
    console.print(f"  Data dir:      {DATA_DIR}")
    console.print(f"  Logs dir:      {LOG_DIR}")


@config_app.command("obfuscate")
def config_obfuscate(
        value: str = typer.Option(
            ..., "--value", prompt=True, hide_input=True, help="Credential to encode."
        ),
) -> None:
    """Encode a Dropbox credential for pasting into the config file."""
    typer.echo(obfuscate(value))
