"""
Text command protocol spoken with the vehicle controller.

Outbound commands are single ASCII lines terminated by a newline
(``UP``, ``SLIDER 42``, ``GET_TEMP`` ...). The only structured inbound
frame is ``TEMP:<float>``; everything else is surfaced as an
unrecognized frame for logging.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional, Union

from .core import SPEED_MAX, SPEED_MIN

logger = logging.getLogger(__name__)

TEMP_PREFIX = "TEMP:"

# Whitespace and ASCII control characters trimmed from inbound frames
_TRIM_CHARS = "".join(chr(c) for c in range(33)) + "\x7f"


class Direction(Enum):
    """Joystick movement directions."""

    UP = "UP"
    DOWN = "DOWN"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    STOP = "STOP"


class Light(Enum):
    """Vehicle lights, valued by their wire label."""

    FRONT = "Front Light"
    BACK = "Back Light"


@dataclass(frozen=True)
class Move:
    direction: Direction


@dataclass(frozen=True)
class SetLight:
    light: Light
    on: bool


@dataclass(frozen=True)
class SetHorn:
    on: bool


@dataclass(frozen=True)
class SetSpeed:
    """Speed slider position, 0-100."""

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"Speed must be an integer, got {self.value!r}")
        if self.value < SPEED_MIN or self.value > SPEED_MAX:
            raise ValueError(
                f"Speed {self.value} out of range [{SPEED_MIN}, {SPEED_MAX}]"
            )


@dataclass(frozen=True)
class RequestTemperature:
    pass


@dataclass(frozen=True)
class Handshake:
    """Sent once right after the link is established."""


Command = Union[Move, SetLight, SetHorn, SetSpeed, RequestTemperature, Handshake]


@dataclass(frozen=True)
class TemperatureFrame:
    value: float


@dataclass(frozen=True)
class UnrecognizedFrame:
    text: str


InboundEvent = Union[TemperatureFrame, UnrecognizedFrame]


def _on_off(on: bool) -> str:
    return "ON" if on else "OFF"


def encode(command: Command) -> bytes:
    """Serialize a command to its newline-terminated wire frame.

    Args:
        command: Any Command variant

    Returns:
        ASCII bytes such as b"UP\\n" or b"SLIDER 42\\n"

    Raises:
        TypeError: If command is not a known Command variant
    """
    if isinstance(command, Move):
        line = command.direction.value
    elif isinstance(command, SetLight):
        line = f"{command.light.value} {_on_off(command.on)}"
    elif isinstance(command, SetHorn):
        line = f"HORN {_on_off(command.on)}"
    elif isinstance(command, SetSpeed):
        line = f"SLIDER {command.value}"
    elif isinstance(command, RequestTemperature):
        line = "GET_TEMP"
    elif isinstance(command, Handshake):
        line = "CONNECTED"
    else:
        raise TypeError(f"Not a command: {command!r}")
    return f"{line}\n".encode("ascii")


def decode(data: bytes) -> Optional[InboundEvent]:
    """Decode one inbound frame.

    Args:
        data: Raw notification payload for a single frame

    Returns:
        TemperatureFrame for a well-formed ``TEMP:<float>``, UnrecognizedFrame
        for any other text, or None for empty frames and malformed floats
    """
    text = data.decode("utf-8", errors="replace").strip(_TRIM_CHARS)
    if not text:
        return None

    if text.startswith(TEMP_PREFIX):
        try:
            return TemperatureFrame(float(text[len(TEMP_PREFIX) :]))
        except ValueError:
            logger.debug(f"Malformed temperature frame: {text!r}")
            return None

    return UnrecognizedFrame(text)


def split_frames(data: bytes) -> Iterator[bytes]:
    """Split a notification payload into individual line frames.

    Yields:
        Each non-empty newline-separated chunk of data
    """
    for chunk in data.split(b"\n"):
        if chunk.strip():
            yield chunk


def joystick_direction(x: float, y: float, dead_zone: float = 0.5) -> Direction:
    """Map joystick axes (-1..1, y pointing down) to a direction.

    Vertical deflection takes precedence over horizontal.
    """
    if y < -dead_zone:
        return Direction.UP
    if y > dead_zone:
        return Direction.DOWN
    if x < -dead_zone:
        return Direction.LEFT
    if x > dead_zone:
        return Direction.RIGHT
    return Direction.STOP
