"""Session commands: session, catalog."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ._common import AGENT_HOME, console, load_cli_config, print_progress
from ..config import setup_logging
from ..errors import CapabilityUnavailableError, CatalogError, SecureDirectoryError
from ..runtime import FontAgent
from ..sync import SyncResult


def _print_result(result: SyncResult) -> None:
    border = "green" if not result.failed_count else "yellow"
    lines = [
        f"Synced: [bold green]{result.success_count}[/]",
        f"Failed: [bold red]{result.failed_count}[/]" if result.failed_count else "Failed: 0",
    ]
    if result.cancelled:
        lines.append("[yellow]Cancelled before all fonts were processed[/]")
    for failure in result.errors:
        lines.append(f"  [red]x[/] {failure.item_label}: [dim]{failure.error}[/]")
    console.print(Panel("\n".join(lines), title="Synchronization", border_style=border))


def register_session_commands(main: click.Group) -> None:
    """Register the session and catalog commands."""

    @main.command("session")
    @click.option("--home", default=AGENT_HOME, help="Agent home directory.", type=click.Path())
    @click.option("--catalog-dir", default=None, type=click.Path(), help="Local font catalog.")
    @click.option("--no-hold", is_flag=True, help="Clean up right after syncing.")
    def session(home: str, catalog_dir: str, no_hold: bool):
        """Sync purchased fonts and keep them active until Ctrl+C.

        Every font is withdrawn and its cached file wiped when the
        session ends.
        """
        home_path = Path(home).expanduser()
        home_path.mkdir(parents=True, exist_ok=True)
        setup_logging(home_path)
        config = load_cli_config(home_path, catalog_dir)

        agent = FontAgent(home_path, config=config)
        try:
            agent.start(install_hooks=not no_hold)
        except (CapabilityUnavailableError, SecureDirectoryError) as exc:
            console.print(f"[bold red]Startup failed:[/] {exc}")
            sys.exit(1)

        console.print(f"\n  Syncing fonts into [cyan]{agent.cache.directory}[/]...")
        try:
            try:
                result = agent.sync_catalog(progress_sink=print_progress)
            except CatalogError as exc:
                console.print(f"[bold red]Catalog unavailable:[/] {exc}")
                sys.exit(1)

            _print_result(result)

            if not no_hold:
                console.print("  [dim]Fonts active. Press Ctrl+C to end the session.[/]")
                agent.wait_for_stop()
        finally:
            # Ctrl+C, errors and sys.exit all end here.
            report = agent.shutdown()

        if report is not None and not report.ok:
            for failure in report.failures:
                console.print(f"  [yellow]cleanup:[/] {failure.step}: {failure.error}")
        console.print("  [green]Session ended.[/] Fonts withdrawn, cache wiped.\n")

    @main.command("catalog")
    @click.option("--home", default=AGENT_HOME, help="Agent home directory.", type=click.Path())
    @click.option("--catalog-dir", default=None, type=click.Path(), help="Local font catalog.")
    def catalog(home: str, catalog_dir: str):
        """List purchased fonts available to sync."""
        from ..catalog import CatalogClient

        home_path = Path(home).expanduser()
        config = load_cli_config(home_path, catalog_dir)
        try:
            fonts = CatalogClient(config).fetch_purchased_fonts()
        except CatalogError as exc:
            console.print(f"[bold red]Catalog unavailable:[/] {exc}")
            sys.exit(1)

        if not fonts:
            console.print("[yellow]No purchased fonts.[/]")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Font", style="bold cyan")
        table.add_column("Provider")
        table.add_column("Size", justify="right", style="dim")
        for font in fonts:
            table.add_row(
                font.display_name,
                font.provider_display_name or font.provider or "-",
                f"{font.file_size / 1024:.1f} KB",
            )
        console.print(table)
