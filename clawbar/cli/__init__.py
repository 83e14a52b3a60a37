"""clawbar CLI — main entry point.

Registers all subcommands under the ``clawbar`` group.
"""

from __future__ import annotations

import click

from clawbar.cli.config_cmd import config_cmd
from clawbar.cli.gateway_cmd import (
    install_cmd,
    logs_cmd,
    mode_cmd,
    path_cmd,
    restart_cmd,
    start_cmd,
    status_cmd,
    stop_cmd,
    uninstall_cmd,
    update_cmd,
    watch_cmd,
)
from clawbar.cli.log_setup import configure_logging
from clawbar.config.defaults import DEBUG_LOG


@click.group(invoke_without_command=True)
@click.version_option(package_name="clawbar")
@click.option("--debug", is_flag=True, envvar="CLAWBAR_DEBUG", help=f"Write a debug log to {DEBUG_LOG}.")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """🦞 clawbar — keep the clawdbot gateway running."""
    configure_logging(debug)
    if ctx.invoked_subcommand is None:
        ctx.invoke(watch_cmd)


cli.add_command(status_cmd, "status")
cli.add_command(start_cmd, "start")
cli.add_command(stop_cmd, "stop")
cli.add_command(restart_cmd, "restart")
cli.add_command(install_cmd, "install")
cli.add_command(uninstall_cmd, "uninstall")
cli.add_command(mode_cmd, "mode")
cli.add_command(path_cmd, "path")
cli.add_command(update_cmd, "update")
cli.add_command(logs_cmd, "logs")
cli.add_command(watch_cmd, "watch")
cli.add_command(config_cmd, "config")


def main() -> None:
    """Package entry point."""
    cli()
