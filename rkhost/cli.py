import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer
from loguru import logger

from rkhost.config import DEFAULT_DEFINITION, ManagerSettings
from rkhost.exceptions import RkHostError
from rkhost.host import Host
from rkhost.services.binary import installed_prefix
from rkhost.services.orchestrator import Orchestrator

app = typer.Typer(no_args_is_help=True, context_settings={"help_option_names": ["-h", "--help"]})

LOG_FORMAT = "<level>{level: <8}</level> | {message}"


def build_orchestrator(prefix: Optional[Path] = None) -> Orchestrator:
    """Build the orchestrator for ``prefix``, or for the prefix already installed."""
    if prefix is None:
        prefix = installed_prefix(DEFAULT_DEFINITION)
        if prefix is not None and prefix != DEFAULT_DEFINITION.prefix:
            logger.info(f"Using installed prefix {prefix}")
    settings = ManagerSettings()
    return Orchestrator(DEFAULT_DEFINITION.with_prefix(prefix), Host(settings))


def configure_logging(level: Optional[str]) -> None:
    level = (level or ManagerSettings().log_level).upper()
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


def fail(e: RkHostError) -> NoReturn:
    typer.echo(f"error: {type(e).__name__}: {e}", err=True)
    typer.echo(f"hint: {e.hint}", err=True)
    sys.exit(1)


def _prompt(label: str, default: str) -> str:
    return typer.prompt(label, default=default, show_default=True)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Diagnostic log level (DEBUG, INFO, WARNING, ERROR). Defaults to RKHOST_LOG_LEVEL."
    ),
):
    """Lifecycle manager for the reasonkit-web service."""
    try:
        configure_logging(log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level")


def install(
    binary: Optional[Path] = typer.Option(None, "--binary", help="Path to the reasonkit-web binary"),
    prefix: Optional[Path] = typer.Option(None, "--prefix", help="Installation prefix (detected when omitted)"),
    skip_user: bool = typer.Option(False, "--skip-user", help="Do not create the service account"),
    skip_dependency: bool = typer.Option(False, "--skip-dependency", help="Do not install Chromium"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept platform warnings without prompting"),
):
    try:
        orchestrator = build_orchestrator(prefix)
        summary = orchestrator.install(
            binary=binary,
            skip_user=skip_user,
            skip_dependency=skip_dependency,
            assume_yes=yes,
            confirm=typer.confirm,
        )
    except RkHostError as e:
        fail(e)

    typer.echo(f"Binary:  {summary.binary} ({summary.version or 'version unknown'})")
    typer.echo(f"Symlink: {summary.symlink}")
    typer.echo(f"Config:  {summary.config}")
    typer.echo(f"Unit:    {summary.unit}")
    typer.echo(f"Account: {summary.account}")
    typer.echo(f"Status:  {summary.status.active_state or 'unknown'}")
    for warning in summary.warnings:
        typer.echo(f"warning: {warning}")


def upgrade(
    binary: Path = typer.Option(..., "--binary", help="Path to the new reasonkit-web binary"),
    prefix: Optional[Path] = typer.Option(None, "--prefix", help="Installation prefix (detected when omitted)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept platform warnings without prompting"),
):
    try:
        summary = build_orchestrator(prefix).upgrade(binary=binary, assume_yes=yes, confirm=typer.confirm)
    except RkHostError as e:
        fail(e)

    typer.echo(f"Upgraded {summary.binary} to {summary.version or 'unknown version'}")
    typer.echo(f"Status: {summary.status.active_state or 'unknown'}")
    for warning in summary.warnings:
        typer.echo(f"warning: {warning}")


def configure(
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Read values from RUST_LOG, CHROME_PATH, ... instead of prompting"
    ),
    start: bool = typer.Option(False, "--start", help="Start (or restart) the service afterwards"),
    enable: bool = typer.Option(False, "--enable", help="Enable the service at boot"),
):
    try:
        document = build_orchestrator().configure(
            non_interactive=non_interactive,
            start=start,
            enable=enable,
            prompt=None if non_interactive else _prompt,
            confirm=None if non_interactive else typer.confirm,
        )
    except RkHostError as e:
        fail(e)

    if document is None:
        typer.echo("Configuration cancelled")
        return
    for key, value in document.env_values().items():
        typer.echo(f"  {key}={value}")


def verify(
    prefix: Optional[Path] = typer.Option(None, "--prefix", help="Installation prefix (detected when omitted)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show details for passing checks"),
    json_output: bool = typer.Option(False, "--json", help="Emit the report as JSON"),
):
    try:
        report = build_orchestrator(prefix).verify()
    except RkHostError as e:
        fail(e)

    typer.echo(report.to_json() if json_output else report.to_text(verbose=verbose))
    sys.exit(report.exit_code)


def uninstall(
    prefix: Optional[Path] = typer.Option(None, "--prefix", help="Installation prefix (detected when omitted)"),
    purge: bool = typer.Option(False, "--purge", help="Also remove configuration, data and logs"),
    remove_account: bool = typer.Option(False, "--remove-account", help="Also delete the service account and group"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    if not yes and not typer.confirm("Uninstall reasonkit-web?"):
        typer.echo("Uninstall cancelled")
        return

    try:
        result = build_orchestrator(prefix).uninstall(purge=purge, remove_account=remove_account)
    except RkHostError as e:
        fail(e)

    if result.preserved or result.account_preserved:
        typer.echo("The following were preserved:")
        for path in result.preserved:
            typer.echo(f"  - {path}")
        if result.account_preserved:
            typer.echo(f"  - User: {result.account_preserved}")
        typer.echo("To remove everything: rkhost uninstall --purge --remove-account --yes")
    else:
        typer.echo("All files have been removed.")


app.command(name="install", help="Install the service on this host.")(install)
app.command(name="upgrade", help="Replace the installed binary with a new build.")(upgrade)
app.command(name="configure", help="Create or update the service configuration.")(configure)
app.command(name="verify", help="Check the installation and report its health.")(verify)
app.command(name="uninstall", help="Remove the service from this host.")(uninstall)

if __name__ == "__main__":
    app()
