"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, link status display,
and toggle-able live display updates.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .controller import LinkState, LinkStatus
from .telemetry import Source, TemperatureReading, temperature_status

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "COLD": "blue",
    "COOL": "cyan",
    "NORMAL": "green",
    "WARM": "dark_orange",
    "HOT": "red",
    "CRITICAL": "bold red",
}

STATE_STYLES = {
    LinkState.IDLE: "dim",
    LinkState.SCANNING: "yellow",
    LinkState.CONNECTING: "yellow",
    LinkState.CONNECTED: "green",
    LinkState.DISCONNECTED: "red",
    LinkState.ERROR: "bold red",
}


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]RcCtrl - BLE Vehicle Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, status: LinkStatus) -> None:
        """Display one-time link status table."""
        self.console.print(self.format_status_table(status))

    def print_result(self, cmd: str, ok: bool) -> None:
        """Display whether a command was delivered to the vehicle."""
        if ok:
            self.console.print(f"[green]✓[/green] {cmd} sent", highlight=False)
        else:
            self.console.print(f"[red]✗[/red] {cmd} not sent", highlight=False)

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message.

        Args:
            message: Info message text
        """
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of ReplCommand objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def start_live(self, status: LinkStatus) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live = Live(
            self.format_status_table(status), console=self.console, refresh_per_second=4
        )
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, status: LinkStatus) -> None:
        """Update live display with a new status snapshot."""
        if not self.live_enabled or self._live is None:
            return

        try:
            self._live.update(self.format_status_table(status))
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self, status: LinkStatus) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live(status)
        return self.live_enabled

    def format_status_table(self, status: LinkStatus) -> Table:
        """Create Rich Table for link and telemetry display."""
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value")

        table.add_row("Link", self.format_state(status.state))
        if status.error is not None:
            table.add_row("Last error", f"[red]{status.error.value}[/red]")
        table.add_row("Device", status.device_name or "-")
        table.add_row("Temperature", self.format_temperature(status.reading.value))
        table.add_row("Source", self.format_source(status.reading))
        return table

    @staticmethod
    def format_state(state: LinkState) -> str:
        style = STATE_STYLES.get(state, "white")
        return f"[{style}]{state.value.upper()}[/{style}]"

    @staticmethod
    def format_temperature(value: float) -> str:
        """Format temperature with its status band.

        Args:
            value: Temperature in Celsius

        Returns:
            Rich markup such as "[green]41.3 °C NORMAL[/green]"
        """
        label = temperature_status(value)
        style = STATUS_STYLES[label]
        return f"[{style}]{value:.1f} °C {label}[/{style}]"

    @staticmethod
    def format_source(reading: TemperatureReading) -> str:
        if reading.source is Source.HARDWARE:
            return "[green]hardware[/green]"
        return "[yellow]simulated[/yellow]"
