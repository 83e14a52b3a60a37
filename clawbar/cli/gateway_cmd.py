"""clawbar gateway commands — status, lifecycle, service and update."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from clawbar.cli.log_setup import configure_logging
from clawbar.gateway.backends import LaunchMode
from clawbar.gateway.controller import GatewayController, GatewayState
from clawbar.gateway.status import GatewayStatus


console = Console()

_STATUS_STYLE = {
    GatewayStatus.RUNNING: "bold green",
    GatewayStatus.STOPPED: "bold red",
    GatewayStatus.UNKNOWN: "bold bright_black",
}


def render_status(ctrl: GatewayController) -> Panel:
    """Build the status panel from the controller's published state."""
    state: GatewayState = ctrl.state
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    style = _STATUS_STYLE[state.status]
    table.add_row("gateway", Text(f"● {state.status.value.lower()}", style=style))
    if state.pid is not None:
        table.add_row("pid", str(state.pid))
    if state.status == GatewayStatus.RUNNING:
        table.add_row("web ui", ctrl.web_ui_url)
    table.add_row(
        "discord",
        Text("connected", style="green") if state.connected else Text("disconnected", style="red"),
    )
    table.add_row("sessions", str(state.active_sessions))
    if state.last_activity is not None:
        table.add_row("last check", state.last_activity.strftime("%H:%M"))
    table.add_row("mode", state.launch_mode.label)
    if state.launch_mode == LaunchMode.SERVICE:
        table.add_row(
            "service",
            Text("installed", style="green")
            if state.service_installed
            else Text("not installed", style="yellow"),
        )
    table.add_row("clawdbot path", str(state.override_path) if state.override_path else "auto-detect")
    if state.is_updating:
        table.add_row("update", state.update_status or "working…")

    border = "bright_cyan"
    if state.status == GatewayStatus.RUNNING and not state.connected:
        border = "yellow"
    panel = Panel(table, title="clawdbot gateway", border_style=border, padding=(0, 2))
    return panel


async def _open_controller(poll: bool) -> GatewayController:
    ctrl = await GatewayController.create()
    if ctrl.config.debug_logging:
        configure_logging(debug=True)
    await ctrl.open(poll=poll)
    return ctrl


def _print_warnings(state: GatewayState) -> None:
    if state.runtime_path is None:
        console.print("[yellow]⚠️ node.js not found[/yellow]")
    if state.artifact_path is None:
        console.print("[yellow]⚠️ clawdbot not found[/yellow]")


async def _with_controller(
    action: Callable[[GatewayController], object],
    settle: bool = True,
) -> None:
    """Open a controller, run *action*, wait for it to converge, show status."""
    ctrl = await _open_controller(poll=False)
    try:
        outcome = action(ctrl)
        if asyncio.iscoroutine(outcome):
            await outcome
        if settle:
            with console.status("[dim]waiting for gateway…[/dim]"):
                await ctrl.settle()
        console.print(render_status(ctrl))
        _print_warnings(ctrl.state)
    finally:
        await ctrl.close()


# ── Interactive menu ────────────────────────────────────────────────


async def _interactive_menu() -> None:
    """Interactive management screen with background polling."""
    ctrl = await _open_controller(poll=True)
    try:
        while True:
            console.print()
            console.print(render_status(ctrl))
            _print_warnings(ctrl.state)
            console.print()

            state = ctrl.state
            options: list[tuple[str, str]] = []
            if state.status == GatewayStatus.RUNNING:
                options.append(("1", "restart"))
                options.append(("2", "stop"))
            else:
                options.append(("1", "start"))
            options.append(("r", "refresh"))
            if state.launch_mode == LaunchMode.SERVICE:
                options.append(("i", "uninstall service" if state.service_installed else "install service"))
            options.append(("m", "switch mode"))
            options.append(("p", "set clawdbot path"))
            if not state.is_updating:
                options.append(("u", "update & rebuild"))
            options.append(("l", "view logs"))
            options.append(("q", "quit"))

            for key, label in options:
                console.print(f"  [bright_cyan]{key}[/bright_cyan]  {label}")
            console.print()

            try:
                choice = (await asyncio.to_thread(console.input, "[bold bright_cyan]❯ [/]")).strip().lower()
            except (KeyboardInterrupt, EOFError):
                break

            state = ctrl.state
            if choice == "q":
                break
            elif choice == "r":
                await ctrl.refresh()
            elif choice == "1":
                if state.status == GatewayStatus.RUNNING:
                    ctrl.restart()
                else:
                    ctrl.start()
            elif choice == "2" and state.status == GatewayStatus.RUNNING:
                ctrl.stop()
            elif choice == "i" and state.launch_mode == LaunchMode.SERVICE:
                if state.service_installed:
                    ctrl.uninstall_service()
                else:
                    ctrl.install_service()
            elif choice == "m":
                other = LaunchMode.DIRECT if state.launch_mode == LaunchMode.SERVICE else LaunchMode.SERVICE
                await ctrl.set_launch_mode(other)
            elif choice == "p":
                try:
                    raw = await asyncio.to_thread(console.input, "[bold]clawdbot directory (empty = auto): [/]")
                except (KeyboardInterrupt, EOFError):
                    continue
                await ctrl.set_entry_artifact_override(raw.strip() or None)
                _report_override(ctrl, raw.strip())
            elif choice == "u":
                ctrl.update_and_rebuild()
            elif choice == "l":
                _show_logs(ctrl.log_path)
            else:
                console.print("[dim]invalid option.[/dim]")
    finally:
        await ctrl.close()


def _show_logs(log_path: Path, lines: int = 50) -> None:
    if not log_path.exists():
        console.print("[dim]no logs yet.[/dim]")
        return
    content = log_path.read_text(errors="replace").strip().splitlines()
    tail = "\n".join(content[-lines:])
    console.print(Panel(Text(tail) if tail else "[dim]no logs yet[/dim]", title=str(log_path)))


def _report_override(ctrl: GatewayController, raw: str) -> None:
    if not raw:
        console.print("[dim]clawdbot path cleared, auto-detecting.[/dim]")
    elif ctrl.validate_override(raw):
        console.print(f"[green]✓ {raw}[/green]")
    else:
        console.print(f"[red]✗ no dist/index.js under {raw}[/red]")


# ── Commands ────────────────────────────────────────────────────────


@click.command("status")
def status_cmd() -> None:
    """Show gateway status."""
    asyncio.run(_with_controller(lambda ctrl: None, settle=False))


@click.command("start")
def start_cmd() -> None:
    """Start the gateway with the configured launch mode."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.start()))


@click.command("stop")
def stop_cmd() -> None:
    """Stop the gateway."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.stop()))


@click.command("restart")
def restart_cmd() -> None:
    """Restart the gateway."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.restart()))


@click.command("install")
def install_cmd() -> None:
    """Install the launchd service and start it."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.install_service()))


@click.command("uninstall")
def uninstall_cmd() -> None:
    """Unload and remove the launchd service."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.uninstall_service()))


@click.command("mode")
@click.argument("mode", required=False, type=click.Choice(["direct", "service"]))
def mode_cmd(mode: str | None) -> None:
    """Show or set the launch mode (direct or service)."""

    async def _run(ctrl: GatewayController) -> None:
        if mode is not None:
            await ctrl.set_launch_mode(mode)

    asyncio.run(_with_controller(_run, settle=False))


@click.command("path")
@click.argument("directory", required=False)
@click.option("--clear", is_flag=True, help="Forget the override and auto-detect.")
def path_cmd(directory: str | None, clear: bool) -> None:
    """Show or set the clawdbot checkout directory."""

    async def _run(ctrl: GatewayController) -> None:
        if clear:
            await ctrl.set_entry_artifact_override(None)
            _report_override(ctrl, "")
        elif directory is not None:
            await ctrl.set_entry_artifact_override(directory)
            _report_override(ctrl, directory)
        state = ctrl.state
        console.print(f"  [dim]node:[/dim] {state.runtime_path or '—'}")
        console.print(f"  [dim]clawdbot:[/dim] {state.artifact_path or '—'}")

    asyncio.run(_with_controller(_run, settle=False))


@click.command("update")
def update_cmd() -> None:
    """Stop, pull, rebuild and restart the gateway."""
    asyncio.run(_with_controller(lambda ctrl: ctrl.update_and_rebuild()))


@click.command("logs")
@click.option("-n", "--lines", default=50, show_default=True, help="Number of lines to show.")
def logs_cmd(lines: int) -> None:
    """Show the tail of the gateway log."""
    from clawbar.config.defaults import GATEWAY_LOG

    _show_logs(GATEWAY_LOG, lines)


@click.command("watch")
def watch_cmd() -> None:
    """Interactive management screen with live polling."""
    asyncio.run(_interactive_menu())
