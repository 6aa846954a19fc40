"""
Bluetooth Transport - BLE link to a JBD BMS using Bleak.

Handles both characteristic layouts seen on these boards: the ff00
service with separate notify (ff01) and write (ff02) characteristics,
and the ffe0 variant with a single ffe1 characteristic for both.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from ..errors import ConnectFailure, ConnectTimeout, TransportUnavailable, WriteFailure
from ..protocol import BMS_CHAR_UUID_ALT, BMS_NOTIFY_CHAR_UUID, BMS_WRITE_CHAR_UUID, to_hex
from ..types import LinkHandle, ScannedDevice


logger = logging.getLogger(__name__)


@dataclass
class BleakLink:
    """Transport-private state behind a LinkHandle"""
    client: BleakClient
    write_char: Any
    notify_char: Any
    closing: bool = False


class BleakTransport:
    """
    Transport adapter for BLE via Bleak.

    Bleak exceptions are translated into smartbms.errors so the
    supervisor never sees them.
    """

    def __init__(self, debug: bool = False) -> None:
        """
        Initialize Bluetooth transport.

        Args:
            debug: Log every chunk sent and received
        """
        self._debug = debug
        self._scanner: Optional[BleakScanner] = None
        self._scan_stop: Optional[asyncio.Event] = None

    async def scan(
        self,
        service_uuids: List[str],
        on_found: Callable[[ScannedDevice], None],
        duration: float,
    ) -> None:
        """Report advertisements until duration elapses or stop_scan() is called"""

        def detection_callback(device, advertisement_data) -> None:
            on_found(ScannedDevice(
                id=device.address,
                name=advertisement_data.local_name or device.name,
                rssi=advertisement_data.rssi,
                service_uuids=tuple(advertisement_data.service_uuids or ()),
            ))

        # No service filter: many boards do not advertise their service UUID
        self._scanner = BleakScanner(detection_callback=detection_callback)
        self._scan_stop = asyncio.Event()
        try:
            await self._scanner.start()
        except (BleakError, OSError) as e:
            self._scanner = None
            self._scan_stop = None
            raise TransportUnavailable(f"Bluetooth not available: {e}") from e

        logger.info(f"Scanning for {duration}s")
        try:
            await asyncio.wait_for(self._scan_stop.wait(), duration)
        except asyncio.TimeoutError:
            pass
        finally:
            scanner, self._scanner = self._scanner, None
            self._scan_stop = None
            try:
                await scanner.stop()
            except BleakError as e:
                logger.warning(f"Error stopping scan: {e}")

    async def stop_scan(self) -> None:
        if self._scan_stop is not None:
            self._scan_stop.set()

    async def connect(
        self,
        device_id: str,
        timeout: float,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> LinkHandle:
        """
        Connect and resolve the BMS characteristics.

        Raises:
            ConnectTimeout: Device did not answer within timeout
            ConnectFailure: Connection refused or no BMS characteristics
        """
        link: Optional[BleakLink] = None

        def disconnected_callback(client: BleakClient) -> None:
            if link is not None and not link.closing and on_lost is not None:
                on_lost()

        client = BleakClient(device_id, disconnected_callback=disconnected_callback, timeout=timeout)
        logger.info(f"Connecting to {device_id}...")
        try:
            await client.connect()
        except asyncio.TimeoutError as e:
            raise ConnectTimeout(f"{device_id} did not answer within {timeout}s") from e
        except asyncio.CancelledError:
            logger.info(f"Connect to {device_id} cancelled")
            await self._close_client(client, force=True)
            raise
        except (BleakError, OSError) as e:
            raise ConnectFailure(f"Could not connect to {device_id}: {e}") from e

        write_char, notify_char = self._resolve_characteristics(client)
        if write_char is None or notify_char is None:
            await self._close_client(client)
            raise ConnectFailure(f"{device_id} has no BMS characteristics")

        if self._debug:
            for service in client.services:
                logger.debug(f"  Service: {service.uuid}")
                for char in service.characteristics:
                    logger.debug(f"    Char: {char.uuid} - {char.properties}")

        link = BleakLink(client=client, write_char=write_char, notify_char=notify_char)
        with_ack = "write-without-response" not in write_char.properties
        logger.info(f"BLE connection established (write {'with' if with_ack else 'without'} response)")
        return LinkHandle(device_id=device_id, write_with_ack=with_ack, context=link)

    @staticmethod
    def _resolve_characteristics(client: BleakClient):
        services = client.services
        write_char = services.get_characteristic(BMS_WRITE_CHAR_UUID)
        notify_char = services.get_characteristic(BMS_NOTIFY_CHAR_UUID)
        if write_char is None or notify_char is None:
            # Single characteristic variant
            shared = services.get_characteristic(BMS_CHAR_UUID_ALT)
            if shared is not None:
                write_char = notify_char = shared
        return write_char, notify_char

    async def disconnect(self, link: LinkHandle) -> None:
        ble: BleakLink = link.context
        ble.closing = True
        await self._close_client(ble.client)

    @staticmethod
    async def _close_client(client: BleakClient, force: bool = False) -> None:
        try:
            if force or client.is_connected:
                await client.disconnect()
                logger.info("Disconnected")
        except (BleakError, OSError) as e:
            logger.warning(f"Disconnect error: {e}")

    async def subscribe(self, link: LinkHandle, on_chunk: Callable[[bytes], None]) -> None:
        """Enable notifications on the notify characteristic"""
        ble: BleakLink = link.context

        def notification_handler(sender, data: bytearray) -> None:
            if self._debug:
                logger.debug(f"RX chunk: {to_hex(data)}")
            on_chunk(bytes(data))

        try:
            await ble.client.start_notify(ble.notify_char, notification_handler)
        except (BleakError, OSError) as e:
            raise ConnectFailure(f"Could not enable notifications: {e}") from e

    async def write(self, link: LinkHandle, data: bytes, with_ack: bool) -> None:
        ble: BleakLink = link.context
        if not ble.client.is_connected:
            raise WriteFailure("link is closed")
        try:
            await ble.client.write_gatt_char(ble.write_char, data, response=with_ack)
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise WriteFailure(f"Send error: {e}") from e
        if self._debug:
            logger.debug(f"TX chunk: {to_hex(data)}")
