"""Shared fakes for unit tests: an in-memory transport and a manual clock."""

import asyncio
from typing import Any, Callable, List, Optional

import pytest

from rcctrl.core import LinkConfig, TelemetryConfig
from rcctrl.transport import Characteristic, Peripheral, Transport

WRITE_NOTIFY = Characteristic("cmd", frozenset({"write", "notify"}))


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    def __init__(self, peripheral: Peripheral) -> None:
        self.peripheral = peripheral


class FakeTransport(Transport):
    """Scripted transport recording everything the controller does."""

    def __init__(
        self,
        peripherals: Optional[List[Peripheral]] = None,
        characteristics: Optional[List[Characteristic]] = None,
    ) -> None:
        self.peripherals = peripherals if peripherals is not None else [
            Peripheral("ESP32-BLE", "AA:BB:CC:DD:EE:01")
        ]
        self.characteristics = (
            characteristics if characteristics is not None else [WRITE_NOTIFY]
        )
        self.scan_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.connect_gate: Optional[asyncio.Event] = None
        self.drop_on_subscribe = False

        self.yielded: List[Peripheral] = []
        self.scan_closed = False
        self.connect_attempts = 0
        self.connection: Optional[FakeConnection] = None
        self.on_disconnect: Optional[Callable[[Any], None]] = None
        self.subscribed: List[Characteristic] = []
        self.notify_callback: Optional[Callable[[bytes], None]] = None
        self.written: List[bytes] = []
        self.disconnected: List[FakeConnection] = []

    async def scan(self, timeout: float):
        if self.scan_error is not None:
            raise self.scan_error
        try:
            for peripheral in self.peripherals:
                self.yielded.append(peripheral)
                yield peripheral
        finally:
            self.scan_closed = True

    async def connect(self, peripheral, on_disconnect):
        self.connect_attempts += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connection = FakeConnection(peripheral)
        self.on_disconnect = on_disconnect
        return self.connection

    async def discover_characteristics(self, connection):
        return list(self.characteristics)

    async def write(self, connection, characteristic, data):
        if self.write_error is not None:
            raise self.write_error
        self.written.append(data)

    async def subscribe(self, connection, characteristic, callback):
        self.subscribed.append(characteristic)
        self.notify_callback = callback
        if self.drop_on_subscribe:
            self.on_disconnect(connection)

    async def disconnect(self, connection):
        self.disconnected.append(connection)

    # Helpers driving the controller from the "peripheral" side

    def notify(self, data: bytes) -> None:
        assert self.notify_callback is not None
        self.notify_callback(data)

    def drop_link(self) -> None:
        assert self.on_disconnect is not None
        self.on_disconnect(self.connection)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1000.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def slow_config() -> LinkConfig:
    """Timers slow enough that they never fire during a test."""
    return LinkConfig(
        telemetry=TelemetryConfig(display_interval=60.0, request_interval=60.0)
    )


@pytest.fixture
def fast_config() -> LinkConfig:
    return LinkConfig(
        telemetry=TelemetryConfig(display_interval=0.01, request_interval=0.02)
    )
