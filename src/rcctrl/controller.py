"""
Link manager for the BLE vehicle.

Owns the connection lifecycle (idle -> scanning -> connecting -> connected
-> disconnected), the single writable command channel, and the telemetry
timers that run while a connection is up. All state lives on the asyncio
event loop; transport callbacks, user intents and timers are serialized
onto it.
"""

import asyncio
import logging
import random
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Callable, List, Optional

from .core import LinkConfig
from .protocol import (
    Command,
    Direction,
    Handshake,
    Light,
    Move,
    RequestTemperature,
    SetHorn,
    SetLight,
    SetSpeed,
    TemperatureFrame,
    UnrecognizedFrame,
    decode,
    encode,
    joystick_direction,
    split_frames,
)
from .telemetry import Source, TelemetryReconciler, TemperatureReading
from .transport import (
    BleakTransport,
    Characteristic,
    Peripheral,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)


class LinkState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class LinkError(Enum):
    SCAN_TIMEOUT = "no matching peripheral found"
    SCAN_FAILURE = "scanning failed"
    CONNECT_FAILURE = "connection failed"
    NO_WRITABLE_CHARACTERISTIC = "device has no writable characteristic"
    WRITE_FAILURE = "write failed"
    LINK_LOST = "link lost"


@dataclass(frozen=True)
class LinkStatus:
    """Snapshot delivered to status listeners."""

    state: LinkState
    error: Optional[LinkError]
    device_name: Optional[str]
    reading: TemperatureReading
    receiving_hardware: bool


@dataclass(frozen=True)
class DeviceHandle:
    """The connected peripheral and its command/telemetry channels."""

    peripheral: Peripheral
    connection: Any
    write_char: Characteristic
    notify_char: Optional[Characteristic] = None

    @property
    def name(self) -> str:
        return self.peripheral.name or self.peripheral.address


@dataclass
class LinkSession:
    """State that lives exactly as long as one connection."""

    handle: Optional[DeviceHandle]
    reconciler: TelemetryReconciler
    tasks: List[asyncio.Task] = field(default_factory=list)

    def close(self) -> List[asyncio.Task]:
        """Invalidate the handle and cancel timers. Returns the cancelled tasks."""
        self.handle = None
        tasks, self.tasks = self.tasks, []
        for task in tasks:
            task.cancel()
        return tasks


def select_characteristics(
    characteristics: List[Characteristic],
) -> tuple[Optional[Characteristic], Optional[Characteristic]]:
    """Pick the command channel and the telemetry channel.

    The first writable characteristic carries commands. Notifications come
    from that same characteristic if it supports them, otherwise from the
    first notifiable sibling.
    """
    write_char = next((c for c in characteristics if c.writable), None)
    if write_char is None:
        return None, None
    if write_char.notifiable:
        return write_char, write_char
    notify_char = next((c for c in characteristics if c.notifiable), None)
    return write_char, notify_char


class VehicleController:
    """Manages discovery, connection and control of the BLE vehicle."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[LinkConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize controller with no device connection."""
        self.config = config or LinkConfig()
        self._transport = transport or BleakTransport(self.config.connect_timeout)
        self._rng = rng or random.Random()
        self._clock = clock

        self._state = LinkState.IDLE
        self._last_error: Optional[LinkError] = None
        self._session: Optional[LinkSession] = None
        self._attempt: Optional[asyncio.Task] = None
        self._last_accepted: Optional[float] = None
        self._pending_connection: Any = None
        self._pending_lost = False
        self._last_reading = TemperatureReading(
            self.config.telemetry.default_temperature, Source.SIMULATED, clock()
        )

        self._listeners: List[Callable[[LinkStatus], None]] = []
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def last_error(self) -> Optional[LinkError]:
        """Reason of the most recent failure, cleared on the next scan."""
        return self._last_error

    @property
    def is_connected(self) -> bool:
        return self._state is LinkState.CONNECTED and self._session is not None

    @property
    def device_name(self) -> Optional[str]:
        if self._session is None or self._session.handle is None:
            return None
        return self._session.handle.name

    @property
    def reconciler(self) -> Optional[TelemetryReconciler]:
        """Telemetry state of the current session, if connected."""
        return self._session.reconciler if self._session else None

    @property
    def temperature(self) -> TemperatureReading:
        """Displayed temperature; the last shown value while disconnected."""
        if self._session is not None:
            return self._session.reconciler.reading
        return self._last_reading

    def get_status(self) -> LinkStatus:
        receiving = self._session.reconciler.receiving_hardware if self._session else False
        return LinkStatus(
            state=self._state,
            error=self._last_error,
            device_name=self.device_name,
            reading=self.temperature,
            receiving_hardware=receiving,
        )

    # ========== Status channel ==========

    def subscribe(self, listener: Callable[[LinkStatus], None]) -> Callable[[], None]:
        """Register a listener called with a LinkStatus on every change.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        status = self.get_status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener error: {e}")
        try:
            self._update_queue.put_nowait(status)
        except asyncio.QueueFull:
            # Drop if backed up - live display can skip a frame
            pass

    async def get_updates(self) -> AsyncGenerator[LinkStatus, None]:
        """Async generator that yields status snapshots as they change."""
        while True:
            yield await self._update_queue.get()

    def _set_state(self, state: LinkState, error: Optional[LinkError] = None) -> None:
        if error is not None:
            self._last_error = error
        if state is self._state and error is None:
            return
        if error is not None:
            logger.warning(f"Link {self._state.value} -> {state.value}: {error.value}")
        else:
            logger.info(f"Link {self._state.value} -> {state.value}")
        self._state = state
        self._notify()

    # ========== Lifecycle ==========

    async def scan(self) -> bool:
        """Scan for the vehicle and connect to the first match.

        Cancels any in-flight attempt and ends any current connection first.

        Returns:
            True if connected, False otherwise (see last_error)
        """
        await self._reset()
        attempt = asyncio.create_task(self._scan_and_connect())
        self._attempt = attempt
        try:
            await asyncio.wait({attempt})
        except asyncio.CancelledError:
            attempt.cancel()
            raise
        if attempt.cancelled():
            return False
        return attempt.result()

    async def connect(self) -> bool:
        """Connect unless already connected."""
        if self.is_connected:
            logger.warning("Already connected")
            return True
        return await self.scan()

    async def _reset(self) -> None:
        """Return to IDLE, cancelling any attempt and ending any session."""
        await self._cancel_attempt()
        await self._end_session()
        self._set_state(LinkState.IDLE)

    async def _cancel_attempt(self) -> None:
        attempt, self._attempt = self._attempt, None
        if attempt is None or attempt.done():
            return
        attempt.cancel()
        try:
            await attempt
        except asyncio.CancelledError:
            pass
        logger.info("Cancelled in-flight connection attempt")

    async def _scan_and_connect(self) -> bool:
        self._last_error = None
        self._set_state(LinkState.SCANNING)
        target = self.config.target_name
        logger.info(f"Scanning for '{target}'...")

        peripheral = None
        try:
            async with aclosing(self._transport.scan(self.config.scan_timeout)) as found:
                async for candidate in found:
                    if candidate.name and target in candidate.name:
                        peripheral = candidate
                        break
        except TransportError as e:
            logger.error(f"Scan failed: {e}")
            self._set_state(LinkState.IDLE, LinkError.SCAN_FAILURE)
            return False

        if peripheral is None:
            self._set_state(LinkState.IDLE, LinkError.SCAN_TIMEOUT)
            return False

        logger.info(f"Found {peripheral.name} ({peripheral.address})")
        self._set_state(LinkState.CONNECTING)
        return await self._connect_to(peripheral)

    async def _connect_to(self, peripheral: Peripheral) -> bool:
        try:
            connection = await self._transport.connect(peripheral, self._on_link_lost)
        except TransportError as e:
            logger.error(f"Connection failed: {e}")
            return self._fail(LinkError.CONNECT_FAILURE)

        self._pending_connection = connection
        self._pending_lost = False
        try:
            characteristics = await self._transport.discover_characteristics(connection)
            write_char, notify_char = select_characteristics(characteristics)
            if write_char is None:
                await self._close_quietly(connection)
                return self._fail(LinkError.NO_WRITABLE_CHARACTERISTIC)

            handle = DeviceHandle(peripheral, connection, write_char, notify_char)
            session = LinkSession(
                handle=handle,
                reconciler=TelemetryReconciler(
                    self.config.telemetry,
                    baseline=self._last_accepted,
                    rng=self._rng,
                    clock=self._clock,
                ),
            )
            if notify_char is not None:
                await self._transport.subscribe(
                    connection,
                    notify_char,
                    lambda data: self._on_notification(session, data),
                )
            else:
                logger.warning("No notifiable characteristic, telemetry is simulated")
        except TransportError as e:
            logger.error(f"Connection setup failed: {e}")
            await self._close_quietly(connection)
            return self._fail(LinkError.CONNECT_FAILURE)
        except asyncio.CancelledError:
            await self._close_quietly(connection)
            raise
        finally:
            self._pending_connection = None

        if self._pending_lost:
            logger.error("Link lost while connecting")
            await self._close_quietly(connection)
            return self._fail(LinkError.CONNECT_FAILURE)

        self._session = session
        self._set_state(LinkState.CONNECTED)
        logger.info(f"Connected to {handle.name}")

        await self._write(session, Handshake())
        if session is not self._session:
            # Link dropped during the handshake
            return False
        session.tasks = [
            asyncio.create_task(self._display_loop(session)),
            asyncio.create_task(self._request_loop(session)),
        ]
        return True

    def _fail(self, error: LinkError) -> bool:
        self._set_state(LinkState.ERROR, error)
        self._set_state(LinkState.IDLE)
        return False

    async def _close_quietly(self, connection: Any) -> None:
        try:
            await self._transport.disconnect(connection)
        except TransportError as e:
            logger.warning(f"Disconnect failed: {e}")

    async def disconnect(self) -> None:
        """Disconnect from the vehicle. No-op if not connected."""
        if self._attempt is not None and not self._attempt.done():
            await self._cancel_attempt()
            if self._session is None:
                self._set_state(LinkState.IDLE)
                return

        if self._session is None:
            logger.debug(f"Disconnect ignored in state {self._state.value}")
            return

        logger.info("Disconnecting...")
        await self._end_session()

    async def close(self) -> None:
        """Tear down: cancel attempts, stop timers and drop the connection."""
        if self._attempt is not None and not self._attempt.done():
            await self._cancel_attempt()
            if self._session is None:
                self._set_state(LinkState.IDLE)
        await self._end_session()

    async def _end_session(self) -> None:
        """Leave CONNECTED, then stop timers and close the transport."""
        session, self._session = self._session, None
        if session is None:
            return
        handle = session.handle
        self._retire(session)
        tasks = session.close()
        self._set_state(LinkState.DISCONNECTED)

        current = asyncio.current_task()
        pending = [t for t in tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if handle is not None:
            await self._close_quietly(handle.connection)

    def _retire(self, session: LinkSession) -> None:
        """Carry the last accepted reading and shown value past the session."""
        reconciler = session.reconciler
        if reconciler.last_hardware_value is not None:
            self._last_accepted = reconciler.last_hardware_value
        self._last_reading = reconciler.reading

    def _on_link_lost(self, connection: Any) -> None:
        """Transport callback when the peripheral drops the link."""
        if self._pending_connection is not None and connection is self._pending_connection:
            logger.warning("Device disconnected during connection setup")
            self._pending_lost = True
            return

        session = self._session
        if (
            session is None
            or session.handle is None
            or session.handle.connection is not connection
        ):
            return
        logger.warning("Device disconnected")
        self._session = None
        self._retire(session)
        session.close()
        self._set_state(LinkState.DISCONNECTED, LinkError.LINK_LOST)

    # ========== Telemetry ==========

    def _on_notification(self, session: LinkSession, data: bytes) -> None:
        if session is not self._session:
            return
        for frame in split_frames(data):
            event = decode(frame)
            if isinstance(event, TemperatureFrame):
                if session.reconciler.handle_event(event):
                    logger.debug(f"Received temperature: {event.value}")
                    self._notify()
            elif isinstance(event, UnrecognizedFrame):
                logger.debug(f"Ignoring inbound frame: {event.text!r}")

    async def _display_loop(self, session: LinkSession) -> None:
        interval = self.config.telemetry.display_interval
        while True:
            await asyncio.sleep(interval)
            session.reconciler.display_tick()
            self._notify()

    async def _request_loop(self, session: LinkSession) -> None:
        interval = self.config.telemetry.request_interval
        while True:
            was_receiving = session.reconciler.receiving_hardware
            if session.reconciler.request_tick():
                await self._write(session, RequestTemperature())
            if was_receiving != session.reconciler.receiving_hardware:
                self._notify()
            await asyncio.sleep(interval)

    # ========== Commands ==========

    async def _write(self, session: LinkSession, command: Command) -> bool:
        handle = session.handle
        if handle is None:
            return False
        data = encode(command)
        try:
            await self._transport.write(handle.connection, handle.write_char, data)
        except TransportError as e:
            logger.warning(f"{LinkError.WRITE_FAILURE.value} for {data!r}: {e}")
            return False
        logger.debug(f"Sent {data!r}")
        return True

    async def send(self, command: Command) -> bool:
        """Encode and write a command to the vehicle.

        Returns:
            True if written, False if not connected or the write failed
        """
        if not self.is_connected or self._session is None:
            logger.error("Not connected")
            return False
        return await self._write(self._session, command)

    async def move(self, direction: Direction) -> bool:
        return await self.send(Move(direction))

    async def drive_joystick(self, x: float, y: float) -> bool:
        """Send the direction for a joystick position (-1..1 on each axis)."""
        return await self.move(joystick_direction(x, y))

    async def set_light(self, light: Light, on: bool) -> bool:
        return await self.send(SetLight(light, on))

    async def set_horn(self, on: bool) -> bool:
        return await self.send(SetHorn(on))

    async def set_speed(self, value: int) -> bool:
        """Set the speed slider.

        Args:
            value: Slider position 0-100

        Returns:
            True if sent, False if out of range or not sent
        """
        try:
            command = SetSpeed(value)
        except ValueError as e:
            logger.error(str(e))
            return False
        return await self.send(command)

    async def request_temperature(self) -> bool:
        return await self.send(RequestTemperature())
