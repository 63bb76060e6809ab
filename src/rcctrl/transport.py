"""
BLE transport boundary.

The link manager only needs a narrow capability set from the radio:
scan, connect, discover characteristics, write, subscribe and disconnect.
``Transport`` describes that contract and ``BleakTransport`` implements it
on top of bleak.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, FrozenSet, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .core import CONNECT_TIMEOUT

logger = logging.getLogger(__name__)

WRITE_PROPERTIES = frozenset({"write", "write-without-response"})
NOTIFY_PROPERTIES = frozenset({"notify", "indicate"})


class TransportError(Exception):
    """A BLE operation failed or timed out."""


@dataclass(frozen=True)
class Peripheral:
    """A discovered advertising device."""

    name: Optional[str]
    address: str
    device: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Characteristic:
    """A GATT characteristic and the operations it supports."""

    uuid: str
    properties: FrozenSet[str]
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def writable(self) -> bool:
        return bool(self.properties & WRITE_PROPERTIES)

    @property
    def notifiable(self) -> bool:
        return bool(self.properties & NOTIFY_PROPERTIES)


class Transport(ABC):
    """Contract the link manager relies on. All failures raise TransportError."""

    @abstractmethod
    def scan(self, timeout: float) -> AsyncIterator[Peripheral]:
        """Yield discovered peripherals until timeout; closing stops the scan.

        A peripheral is yielded again when its advertised name changes.
        """

    @abstractmethod
    async def connect(
        self, peripheral: Peripheral, on_disconnect: Callable[[Any], None]
    ) -> Any:
        """Connect and return an opaque connection object.

        on_disconnect is invoked with that connection when the link drops.
        """

    @abstractmethod
    async def discover_characteristics(self, connection: Any) -> List[Characteristic]:
        """List every characteristic of every service on the connection."""

    @abstractmethod
    async def write(
        self, connection: Any, characteristic: Characteristic, data: bytes
    ) -> None:
        """Write bytes to a characteristic."""

    @abstractmethod
    async def subscribe(
        self,
        connection: Any,
        characteristic: Characteristic,
        callback: Callable[[bytes], None],
    ) -> None:
        """Deliver notifications from characteristic to callback."""

    @abstractmethod
    async def disconnect(self, connection: Any) -> None:
        """Close the connection."""


class BleakTransport(Transport):
    """Transport backed by bleak's scanner and client."""

    def __init__(self, connect_timeout: float = CONNECT_TIMEOUT) -> None:
        self.connect_timeout = connect_timeout

    async def scan(self, timeout: float) -> AsyncIterator[Peripheral]:
        queue: asyncio.Queue = asyncio.Queue()
        seen: set = set()

        def on_detection(device, advertisement) -> None:  # type: ignore[no-untyped-def]
            # The local name often arrives only in a later scan response,
            # so a device is reported again once its name changes
            name = advertisement.local_name or device.name
            key = (device.address, name)
            if key in seen:
                return
            seen.add(key)
            queue.put_nowait(Peripheral(name=name, address=device.address, device=device))

        try:
            scanner = BleakScanner(detection_callback=on_detection)
            await scanner.start()
        except (BleakError, OSError) as e:
            raise TransportError(f"Scan failed to start: {e}") from e

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return
                try:
                    peripheral = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    return
                logger.debug(f"Discovered {peripheral.name} ({peripheral.address})")
                yield peripheral
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as e:
                logger.warning(f"Failed to stop scanner: {e}")

    async def connect(
        self, peripheral: Peripheral, on_disconnect: Callable[[Any], None]
    ) -> BleakClient:
        client = BleakClient(
            peripheral.device or peripheral.address,
            disconnected_callback=on_disconnect,
            timeout=self.connect_timeout,
        )
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Connect to {peripheral.address} failed: {e}") from e
        return client

    async def discover_characteristics(
        self, connection: BleakClient
    ) -> List[Characteristic]:
        try:
            services = connection.services
        except BleakError as e:
            raise TransportError(f"Service discovery failed: {e}") from e

        characteristics = []
        for service in services:
            for char in service.characteristics:
                characteristics.append(
                    Characteristic(
                        uuid=char.uuid,
                        properties=frozenset(char.properties),
                        raw=char,
                    )
                )
        return characteristics

    async def write(
        self, connection: BleakClient, characteristic: Characteristic, data: bytes
    ) -> None:
        response = "write" in characteristic.properties
        try:
            await connection.write_gatt_char(
                characteristic.raw or characteristic.uuid, data, response=response
            )
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def subscribe(
        self,
        connection: BleakClient,
        characteristic: Characteristic,
        callback: Callable[[bytes], None],
    ) -> None:
        def on_notify(_sender, data: bytearray) -> None:  # type: ignore[no-untyped-def]
            callback(bytes(data))

        try:
            await connection.start_notify(
                characteristic.raw or characteristic.uuid, on_notify
            )
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Subscribe failed: {e}") from e

    async def disconnect(self, connection: BleakClient) -> None:
        try:
            await connection.disconnect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Disconnect failed: {e}") from e
