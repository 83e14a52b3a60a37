"""clawbar config — inspect and change preferences."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

from clawbar.config.config import Config
from clawbar.gateway.backends import LaunchMode
from clawbar.gateway.paths import validate_override

console = Console()

_BOOLEAN_KEYS = ("notifications.enabled", "logging.debug")


def _coerce(key: str, value: str) -> Any:
    """Turn the command-line text into the stored value for *key*."""
    if key == "gateway.launch_mode":
        choices = [mode.value for mode in LaunchMode]
        if value.lower() not in choices:
            raise click.BadParameter(f"must be one of {', '.join(choices)}", param_hint="VALUE")
        return value.lower()
    if key == "gateway.clawdbot_path":
        return value
    if key in _BOOLEAN_KEYS:
        return click.BOOL.convert(value, None, None)
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


async def _load() -> Config:
    return await Config.load()


@click.group("config", invoke_without_command=True)
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Show or change clawbar preferences."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(show_cmd)


@config_cmd.command("show")
def show_cmd() -> None:
    """Pretty-print the preferences file."""
    cfg = asyncio.run(_load())
    syntax = Syntax(json.dumps(cfg.data, indent=2, default=str), "json", theme="monokai")
    console.print(Panel(syntax, title=str(cfg.path), border_style="bright_cyan"))


@config_cmd.command("get")
@click.argument("key")
def get_cmd(key: str) -> None:
    """Print one value, e.g. ``gateway.launch_mode``."""
    cfg = asyncio.run(_load())
    value = cfg.get(key)
    if value is None:
        console.print(f"[dim]{key} is not set[/dim]")
        raise SystemExit(1)
    console.print(json.dumps(value, default=str))


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
def set_cmd(key: str, value: str) -> None:
    """Store VALUE under KEY."""
    parsed = _coerce(key, value)

    async def _run() -> None:
        cfg = await Config.load()
        cfg.set(key, parsed)
        await cfg.save()

    asyncio.run(_run())
    console.print(f"[green]✓[/green] {key} = {parsed!r}")
    if key == "gateway.clawdbot_path" and parsed and not validate_override(parsed):
        console.print(f"[yellow]⚠️ no dist/index.js under {parsed}, auto-detect will be used[/yellow]")


@config_cmd.command("edit")
def edit_cmd() -> None:
    """Open the preferences file in $EDITOR."""
    cfg = asyncio.run(_load())
    if not cfg.path.exists():
        asyncio.run(cfg.save())
    click.edit(filename=str(cfg.path))


@config_cmd.command("reset")
@click.option("--yes", is_flag=True, help="Don't ask for confirmation.")
def reset_cmd(yes: bool) -> None:
    """Restore the default preferences."""
    if not yes:
        click.confirm("Reset all clawbar preferences?", abort=True)
    cfg = asyncio.run(_load())
    asyncio.run(cfg.reset())
    console.print("[green]✓[/green] preferences reset to defaults.")
