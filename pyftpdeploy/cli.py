"""CLI interface for pyftpdeploy."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from .config import (
    DeployConfig,
    FtpProtocol,
    LogLevel,
    Security,
    load_config_file,
)
from .exceptions import ConfigurationFault, FtpDeployError
from .output import OutputFormatter
from .sync import DeploySession, ManifestStore
from .utils import DEFAULT_STATE_NAME, format_number

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    """Set up logging for the pyftpdeploy loggers."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyftpdeploy").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


def build_config(config_file: Optional[str], overrides: dict[str, Any]) -> DeployConfig:
    """Merge a config file with CLI overrides into a DeployConfig.

    Args:
        config_file: Optional path to a JSON config file
        overrides: Config-file keys given on the command line (None = not given)

    Raises:
        ConfigurationFault: If the merged configuration is invalid
    """
    data: dict[str, Any] = {}
    if config_file:
        data.update(load_config_file(Path(config_file)))
    for key, value in overrides.items():
        if value is None or (key == "exclude" and not value):
            continue
        data[key] = list(value) if key == "exclude" else value
    return DeployConfig.from_dict(data)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output the result in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyftpdeploy")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """PyFtpDeploy - Publish only what changed to an FTP server."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose


@main.command()
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with deploy settings (command line options win)",
)
@click.option("--server", "-s", help="FTP server host name")
@click.option("--username", "-u", help="FTP user name")
@click.option(
    "--password",
    "-p",
    envvar="FTP_DEPLOY_PASSWORD",
    help="FTP password (or FTP_DEPLOY_PASSWORD environment variable)",
)
@click.option("--port", type=int, help="Server port [default: 21]")
@click.option(
    "--protocol",
    type=click.Choice([p.value for p in FtpProtocol]),
    help="ftp, ftps (explicit TLS) or ftps-legacy (implicit TLS) [default: ftp]",
)
@click.option(
    "--security",
    type=click.Choice([s.value for s in Security]),
    help="Certificate validation for FTPS [default: loose]",
)
@click.option(
    "--local-dir",
    "-l",
    type=click.Path(file_okay=False),
    help="Folder to publish [default: ./]",
)
@click.option("--server-dir", "-r", help="Remote folder, must end with / [default: ./]")
@click.option(
    "--state-name",
    help=f"Name of the sync state file [default: {DEFAULT_STATE_NAME}]",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=None,
    help="Show what would be done without changing the server",
)
@click.option(
    "--dangerous-clean-slate/--no-dangerous-clean-slate",
    default=None,
    help="Delete everything on the server before publishing",
)
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="Glob pattern to exclude (repeatable, replaces the defaults)",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel]),
    help="minimal, standard or verbose [default: standard]",
)
@click.option("--timeout", type=float, help="Socket timeout in seconds [default: 30]")
@click.pass_context
def deploy(
    ctx: Any,
    config_file: Optional[str],
    server: Optional[str],
    username: Optional[str],
    password: Optional[str],
    port: Optional[int],
    protocol: Optional[str],
    security: Optional[str],
    local_dir: Optional[str],
    server_dir: Optional[str],
    state_name: Optional[str],
    dry_run: Optional[bool],
    dangerous_clean_slate: Optional[bool],
    exclude: tuple[str, ...],
    log_level: Optional[str],
    timeout: Optional[float],
) -> None:
    """Publish a local folder to an FTP server.

    Only files whose content changed since the last deploy are uploaded;
    files removed locally are removed from the server.

    Examples:
        pyftpdeploy deploy -s ftp.example.com -u deploy -l ./dist/ -r ./public/
        pyftpdeploy deploy -c deploy.json --dry-run
        FTP_DEPLOY_PASSWORD=secret pyftpdeploy deploy -c deploy.json
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        config = build_config(
            config_file,
            {
                "server": server,
                "username": username,
                "password": password,
                "port": port,
                "protocol": protocol,
                "security": security,
                "local-dir": local_dir,
                "server-dir": server_dir,
                "state-name": state_name,
                "dry-run": dry_run,
                "dangerous-clean-slate": dangerous_clean_slate,
                "exclude": exclude,
                "log-level": log_level,
                "timeout": timeout,
            },
        )
        config.validate()
    except ConfigurationFault as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(1)

    verbose = ctx.obj["verbose"] or config.log_level == LogLevel.VERBOSE
    configure_logging(verbose)
    if config.log_level == LogLevel.MINIMAL:
        out.quiet = True

    try:
        result = DeploySession(config, output=out).run()
    except ConfigurationFault as e:
        out.error(f"Connection failed: {e}")
        out.error(
            "Check the server, port, username, password and protocol (FTP/FTPS)."
        )
        ctx.exit(1)
    except FtpDeployError as e:
        out.error(f"Deploy failed: {e}")
        ctx.exit(1)
    except KeyboardInterrupt:
        out.warning("\nDeploy cancelled by user")
        ctx.exit(130)

    if out.json_output:
        out.output_json(result.to_dict())


@main.command()
@click.option(
    "--local-dir",
    "-l",
    type=click.Path(exists=True, file_okay=False),
    default="./",
    show_default=True,
    help="Published folder holding the state file",
)
@click.option(
    "--state-name",
    default=DEFAULT_STATE_NAME,
    show_default=True,
    help="Name of the sync state file",
)
@click.pass_context
def status(ctx: Any, local_dir: str, state_name: str) -> None:
    """Show the last saved sync state of a local folder."""
    out: OutputFormatter = ctx.obj["out"]
    configure_logging(ctx.obj["verbose"])

    store = ManifestStore(Path(local_dir) / state_name)
    manifest = store.load()
    if manifest is None:
        out.error(f"No readable sync state at {store.path}")
        ctx.exit(1)

    if out.json_output:
        out.output_json(
            {
                "path": str(store.path),
                "generated_at": manifest.generated_at,
                "format_version": manifest.format_version,
                "files": manifest.file_count,
                "folders": manifest.folder_count,
                "total_bytes": manifest.total_bytes,
            }
        )
        return

    out.info(f"State file: {store.path}")
    out.info(f"Last saved: {manifest.generated_datetime:%A, %B %d, %Y %H:%M}")
    out.info(f"Format version: {manifest.format_version}")
    out.info(f"Files: {format_number(manifest.file_count)}")
    out.info(f"Folders: {format_number(manifest.folder_count)}")
    out.info(f"Total size: {out.format_size(manifest.total_bytes)}")


if __name__ == "__main__":
    main()
