"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .protocol import Direction

LIGHT_NAMES = {"front": "FRONT", "back": "BACK"}
SWITCH_VALUES = ("on", "off")


@dataclass
class ReplCommand:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    ReplCommand(
        name="scan",
        aliases=["connect", "c"],
        description="Scan for the vehicle and connect (rescans if connected)",
        usage="scan",
        handler="cmd_scan",
    ),
    ReplCommand(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from vehicle",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    ReplCommand(
        name="drive",
        aliases=["d"],
        description="Move the vehicle",
        usage="drive <up|down|left|right|stop>",
        handler="cmd_drive",
    ),
    ReplCommand(
        name="joy",
        aliases=["j"],
        description="Move using joystick axes (-1..1, y down)",
        usage="joy <x> <y>",
        handler="cmd_joy",
    ),
    ReplCommand(
        name="light",
        aliases=["l"],
        description="Switch a light on or off",
        usage="light <front|back> <on|off>",
        handler="cmd_light",
    ),
    ReplCommand(
        name="horn",
        aliases=["hn"],
        description="Switch the horn on or off",
        usage="horn <on|off>",
        handler="cmd_horn",
    ),
    ReplCommand(
        name="speed",
        aliases=["sp"],
        description="Set speed slider (0-100)",
        usage="speed <0-100>",
        handler="cmd_speed",
    ),
    ReplCommand(
        name="temp",
        aliases=["t"],
        description="Request a temperature reading",
        usage="temp",
        handler="cmd_temp",
    ),
    ReplCommand(
        name="status",
        aliases=["st"],
        description="Show link state and temperature",
        usage="status",
        handler="cmd_status",
    ),
    ReplCommand(
        name="live",
        aliases=["lv"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    ReplCommand(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    ReplCommand(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]


def get_command(name: str) -> ReplCommand | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        ReplCommand object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


def argument_choices(command: str, position: int) -> List[str]:
    """Suggested values for the argument at position (0-based) of command."""
    cmd = get_command(command)
    if cmd is None:
        return []
    if cmd.name == "drive" and position == 0:
        return [d.value.lower() for d in Direction]
    if cmd.name == "light":
        if position == 0:
            return sorted(LIGHT_NAMES)
        if position == 1:
            return list(SWITCH_VALUES)
    if cmd.name == "horn" and position == 0:
        return list(SWITCH_VALUES)
    if cmd.name == "speed" and position == 0:
        return [str(v) for v in range(0, 101, 10)]
    return []


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self) -> None:
        """Initialize completer."""
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # A trailing space means the user is starting the next word
        if text.endswith(" "):
            parts.append("")

        if len(parts) <= 1:
            partial_cmd = parts[0].lower() if parts else ""
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name[len(partial_cmd) :],
                        start_position=0,
                        display=name,
                    )
            return

        partial = parts[-1].lower()
        for choice in argument_choices(parts[0].lower(), len(parts) - 2):
            if choice.startswith(partial):
                yield Completion(
                    choice[len(partial) :],
                    start_position=0,
                    display=choice,
                )
