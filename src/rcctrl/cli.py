"""
Main REPL application for BLE vehicle control.

Interactive command loop with async support, auto-completion,
and live link/temperature display.
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from contextlib import aclosing
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, LIGHT_NAMES, CommandCompleter, get_command
from .controller import LinkError, LinkState, LinkStatus, VehicleController
from .core import SPEED_MAX, SPEED_MIN, LinkConfig
from .display import DisplayManager
from .protocol import Direction, Light
from .transport import BleakTransport, TransportError

logger = logging.getLogger(__name__)


def _parse_switch(value: str) -> Optional[bool]:
    value = value.lower()
    if value == "on":
        return True
    if value == "off":
        return False
    return None


class RcCtrlREPL:
    """Interactive REPL for BLE vehicle control."""

    def __init__(self, controller: Optional[VehicleController] = None) -> None:
        """Initialize REPL with controller and display manager."""
        self.controller = controller or VehicleController()
        self.display = DisplayManager()
        self.running = False
        self.session: PromptSession

        self._unsubscribe = self.controller.subscribe(self._on_status)
        self._last_state = self.controller.state

        # Create prompt session with auto-completion
        self.session = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background update task
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        # Auto-connect to vehicle on startup
        self.display.console.print(
            f"Scanning for '{self.controller.config.target_name}'..."
        )
        if await self.controller.connect():
            self.display.console.print("✓ Connected successfully\n")
        else:
            self.display.console.print(
                "⚠ Could not connect to vehicle. Use 'scan' command to retry.\n"
            )

        # Start update processing loop
        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    prompt_text = self._get_prompt()
                    text = await self.session.prompt_async(prompt_text)

                    if text.strip():
                        await self._handle_input(text.strip())

                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            self._unsubscribe()
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass
            await self.controller.close()

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on link state.

        Returns:
            FormattedText for prompt_toolkit
        """
        if self.controller.is_connected:
            name = self.controller.device_name or "vehicle"
            return FormattedText([("class:prompt", f"[{name}] > ")])
        return FormattedText([("class:prompt", f"[{self.controller.state.value}] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler_name = cmd.handler
        if not hasattr(self, handler_name):
            self.display.print_error(f"Handler not found: {handler_name}")
            return

        handler = getattr(self, handler_name)

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task feeding status snapshots to the live display."""
        try:
            async for status in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(status)
        except asyncio.CancelledError:
            pass

    def _on_status(self, status: LinkStatus) -> None:
        """Report link loss as it happens."""
        lost = (
            status.state is LinkState.DISCONNECTED
            and status.error is LinkError.LINK_LOST
            and self._last_state is not LinkState.DISCONNECTED
        )
        self._last_state = status.state
        if lost:
            if self.display.live_enabled:
                self.display.stop_live()
            self.display.print_info("Vehicle disconnected")

    def _require_connection(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'scan' first.")
            return False
        return True

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """Scan for the vehicle and connect."""
        if self.display.live_enabled:
            self.display.stop_live()

        self.display.print_info(f"Scanning for '{self.controller.config.target_name}'...")
        if not await self.controller.scan():
            error = self.controller.last_error
            reason = error.value if error else "cancelled"
            self.display.print_error(f"Connection failed: {reason}")
            return

        self.display.print_info(f"Connected to {self.controller.device_name}")
        await self.cmd_status([])

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from vehicle."""
        if not self.controller.is_connected:
            self.display.print_info("Not connected")
            return

        if self.display.live_enabled:
            self.display.stop_live()

        await self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_drive(self, args: list) -> None:
        """Move the vehicle."""
        if not self._require_connection():
            return
        if not args:
            self.display.print_error("Usage: drive <up|down|left|right|stop>")
            return

        try:
            direction = Direction[args[0].upper()]
        except KeyError:
            self.display.print_error(f"Invalid direction: {args[0]}")
            return

        self.display.print_result(direction.value, await self.controller.move(direction))

    async def cmd_joy(self, args: list) -> None:
        """Move using joystick axes."""
        if not self._require_connection():
            return
        if len(args) != 2:
            self.display.print_error("Usage: joy <x> <y>")
            return

        try:
            x, y = float(args[0]), float(args[1])
        except ValueError:
            self.display.print_error(f"Invalid joystick position: {' '.join(args)}")
            return

        self.display.print_result("joystick", await self.controller.drive_joystick(x, y))

    async def cmd_light(self, args: list) -> None:
        """Switch a light on or off."""
        if not self._require_connection():
            return
        if len(args) != 2 or args[0].lower() not in LIGHT_NAMES:
            self.display.print_error("Usage: light <front|back> <on|off>")
            return

        on = _parse_switch(args[1])
        if on is None:
            self.display.print_error(f"Expected on/off, got: {args[1]}")
            return

        light = Light[LIGHT_NAMES[args[0].lower()]]
        self.display.print_result(light.value, await self.controller.set_light(light, on))

    async def cmd_horn(self, args: list) -> None:
        """Switch the horn on or off."""
        if not self._require_connection():
            return
        on = _parse_switch(args[0]) if args else None
        if on is None:
            self.display.print_error("Usage: horn <on|off>")
            return

        self.display.print_result("horn", await self.controller.set_horn(on))

    async def cmd_speed(self, args: list) -> None:
        """Set the speed slider."""
        if not self._require_connection():
            return
        if not args:
            self.display.print_error("Usage: speed <0-100>")
            return

        try:
            speed = int(args[0])
        except ValueError:
            self.display.print_error(f"Invalid speed: {args[0]}")
            return

        if not SPEED_MIN <= speed <= SPEED_MAX:
            self.display.print_error(
                f"Speed out of range. Must be {SPEED_MIN}-{SPEED_MAX}"
            )
            return

        self.display.print_result(f"speed {speed}", await self.controller.set_speed(speed))

    async def cmd_temp(self, args: list) -> None:
        """Request a temperature reading."""
        if not self._require_connection():
            return
        self.display.print_result("temperature request", await self.controller.request_temperature())

    async def cmd_status(self, args: list) -> None:
        """Show link state and temperature."""
        self.display.print_status(self.controller.get_status())

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        if not self.display.toggle_live(self.controller.get_status()):
            self.display.print_info("Live display disabled")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def list_peripherals(config: LinkConfig, display: DisplayManager) -> None:
    """Print every advertising peripheral seen during one scan window."""
    transport = BleakTransport(config.connect_timeout)
    display.print_info(f"Scanning for {config.scan_timeout:.0f}s...")
    count = 0
    try:
        async with aclosing(transport.scan(config.scan_timeout)) as found:
            async for peripheral in found:
                count += 1
                marker = (
                    " [green](target)[/green]"
                    if peripheral.name and config.target_name in peripheral.name
                    else ""
                )
                display.console.print(
                    f"  {peripheral.address}  {peripheral.name or '-'}{marker}"
                )
    except TransportError as e:
        display.print_error(str(e))
        sys.exit(1)
    display.print_info(f"Found {count} device(s)")


async def read_temperature(config: LinkConfig, display: DisplayManager) -> None:
    """Connect, wait for a hardware temperature report and print it."""
    controller = VehicleController(config=config)
    try:
        display.print_info("Connecting to vehicle...")
        if not await controller.scan():
            error = controller.last_error
            display.print_error(
                f"Failed to connect: {error.value if error else 'cancelled'}"
            )
            sys.exit(1)

        wait = config.telemetry.request_interval * 2
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while loop.time() < deadline:
            reconciler = controller.reconciler
            if reconciler is None or reconciler.last_hardware_value is not None:
                break
            await asyncio.sleep(0.1)

        reconciler = controller.reconciler
        if reconciler is not None and reconciler.last_hardware_value is not None:
            display.console.print(
                f"Temperature: {display.format_temperature(reconciler.last_hardware_value)}"
            )
        else:
            display.print_error(f"No temperature reported within {wait:.0f}s")
            sys.exit(1)
    finally:
        await controller.close()


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="BLE Vehicle Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rcctrl                     # Start interactive REPL
  rcctrl --scan              # List nearby BLE peripherals
  rcctrl --temp              # Connect and print the vehicle temperature
  rcctrl --target RC-CAR     # Connect to a peripheral named *RC-CAR*
        """,
    )

    parser.add_argument("--scan", action="store_true", help="List nearby peripherals")
    parser.add_argument("--temp", action="store_true", help="Print vehicle temperature")
    parser.add_argument(
        "--target",
        default=LinkConfig.target_name,
        help="Advertised name substring to connect to (default: %(default)s)",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=LinkConfig.scan_timeout,
        help="Scan window in seconds (default: %(default)s)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )
    # bleak is chatty at DEBUG
    logging.getLogger("bleak").setLevel(logging.INFO)

    config = dataclasses.replace(
        LinkConfig(), target_name=args.target, scan_timeout=args.scan_timeout
    )
    display = DisplayManager()

    if args.scan and args.temp:
        print("Error: Only one command can be specified at a time", file=sys.stderr)
        sys.exit(1)

    try:
        if args.scan:
            asyncio.run(list_peripherals(config, display))
        elif args.temp:
            asyncio.run(read_temperature(config, display))
        else:
            repl = RcCtrlREPL(VehicleController(config=config))
            asyncio.run(repl.run())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
