"""Cache commands: cache status, cache purge, audit."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ._common import AGENT_HOME, console, load_cli_config, logger
from ..audit import read_audit_log
from ..bridge import load_bridge
from ..errors import CapabilityUnavailableError
from ..font_manager import FontLifecycleManager
from ..secure_cache import SecureCache


def _on_off(flag: bool) -> str:
    return "[green]on[/]" if flag else "[yellow]off[/]"


def register_cache_commands(main: click.Group) -> None:
    """Register the cache command group and the audit command."""

    @main.group()
    def cache():
        """Inspect or wipe the hidden font cache."""

    @cache.command("status")
    @click.option("--home", default=AGENT_HOME, help="Agent home directory.", type=click.Path())
    def cache_status(home: str):
        """Show where fonts are cached and how they are protected."""
        home_path = Path(home).expanduser()
        config = load_cli_config(home_path)
        secure = SecureCache(home_path, config.cache)
        files = secure.list_cached_files()

        console.print()
        console.print(
            Panel(
                f"Directory: [cyan]{secure.directory}[/]\n"
                f"Cached files: [bold]{len(files)}[/]\n"
                f"Obfuscation: {_on_off(config.cache.enable_obfuscation)}\n"
                f"Permission hardening: {_on_off(config.cache.enable_permission_hardening)}\n"
                f"Access monitor: {_on_off(config.cache.enable_file_watcher)} "
                f"[dim]({config.cache.watcher_sensitivity_ms} ms)[/]",
                title="Secure Cache",
                border_style="magenta",
            )
        )
        if files:
            console.print(
                "  [yellow]Files left from a session that did not shut down cleanly.[/]"
                " Run [bold]cloudfont cache purge[/]."
            )
        console.print()

    @cache.command("purge")
    @click.option("--home", default=AGENT_HOME, help="Agent home directory.", type=click.Path())
    def cache_purge(home: str):
        """Withdraw leftover registrations and wipe the cache."""
        home_path = Path(home).expanduser()
        config = load_cli_config(home_path)
        secure = SecureCache(home_path, config.cache, home=home_path)

        try:
            bridge = load_bridge(config)
        except CapabilityUnavailableError as exc:
            logger.warning("Purging cache without withdrawing registrations: %s", exc)
            console.print(f"  [yellow]{exc}[/]; wiping cache only.")
            report = secure.cleanup()
        else:
            report = FontLifecycleManager(bridge, secure, home=home_path).cleanup()

        if report.ok:
            console.print("  [green]Cache wiped.[/]")
        else:
            for failure in report.failures:
                console.print(f"  [red]{failure.step}[/]: {failure.error}")

    @main.command("audit")
    @click.option("--home", default=AGENT_HOME, help="Agent home directory.", type=click.Path())
    @click.option("--limit", "-n", default=20, help="Show the last N entries (0 = all).")
    @click.option("--type", "event_type", default=None, help="Only this event type.")
    def audit(home: str, limit: int, event_type: Optional[str]):
        """Show the security audit log."""
        home_path = Path(home).expanduser()
        entries = read_audit_log(home_path, limit=limit, event_type=event_type)
        if not entries:
            console.print("[dim]No audit entries.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim")
        table.add_column("Event", style="bold")
        table.add_column("Detail")
        for entry in entries:
            style = "red" if entry.event_type == "FONT_SECURITY_EVENT" else ""
            table.add_row(entry.timestamp[:19], entry.event_type, entry.detail, style=style)
        console.print(table)
