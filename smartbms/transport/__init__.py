"""
Mock Transport - For testing without hardware.

Simulates a JBD BMS behind a BLE link: scan results, connect delays and
failures, chunked notifications and the register protocol itself.
"""

import asyncio
import logging
import struct
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple

from ..errors import ConnectFailure, ConnectTimeout, TransportUnavailable, WriteFailure
from ..protocol import (
    BMS_SERVICE_UUID,
    CMD_BASIC_INFO,
    CMD_CELL_VOLTAGES,
    CMD_VERSION,
    END_MARKER,
    EXIT_SAVE,
    FACTORY_UNLOCK,
    MODE_READ,
    MODE_WRITE,
    REG_DEVICE_NAME,
    REG_ENTER_FACTORY,
    REG_EXIT_FACTORY,
    START_MARKER,
    STATUS_OK,
    build_frame,
    to_hex,
)
from ..types import LinkHandle, ScannedDevice


logger = logging.getLogger(__name__)

DEFAULT_DEVICE_ID = "A4:C1:38:00:00:01"
STATUS_REJECTED = 0x80


@dataclass
class BMSState:
    """Simulated pack state"""
    # Pack
    voltage: float = 13.2                       # Volts
    current: float = -1.5                       # Amperes, negative = discharging
    remaining_capacity: float = 80.0            # Ah
    nominal_capacity: float = 100.0             # Ah
    cycle_count: int = 42
    production_date: Optional[date] = date(2023, 5, 17)

    # Status words
    balance_status: int = 0                     # Cells 1-32, bit per cell
    protection_status: int = 0
    software_version: int = 0x21
    rsoc: int = 80
    charge_mos: bool = True
    discharge_mos: bool = True

    # Sensors
    cells: Tuple[float, ...] = (3.301, 3.312, 3.298, 3.305)    # Volts
    temperatures: Tuple[float, ...] = (25.0, 26.5)             # deg C

    name: str = "xiaoxiang BMS"
    hardware_version: str = "JBD-SP04S034-L4S-100A"

    # Counters
    command_count: int = 0


class SimulatedBMS:
    """
    Answers command frames the way a JBD board does.

    Name writes are only accepted in factory mode and only take effect
    when factory mode is left with the save word.
    """

    def __init__(self, state: Optional[BMSState] = None) -> None:
        self.state = state or BMSState()
        self.factory_mode = False
        self._pending_name: Optional[str] = None
        self.rejected_registers: set = set()

    def handle(self, frame: bytes) -> Optional[bytes]:
        """
        Process one command frame.

        Args:
            frame: Complete request frame

        Returns:
            Response frame, or None when the request is not understood
        """
        if len(frame) < 7 or frame[0] != START_MARKER or frame[-1] != END_MARKER:
            logger.warning(f"[SIM] Ignoring malformed request: {to_hex(frame)}")
            return None

        mode, register, length = frame[1], frame[2], frame[3]
        data = bytes(frame[4:4 + length])
        self.state.command_count += 1

        if register in self.rejected_registers:
            return build_frame(register, STATUS_REJECTED)

        if mode == MODE_READ:
            return self._handle_read(register)
        if mode == MODE_WRITE:
            return self._handle_write(register, data)

        logger.warning(f"[SIM] Unknown mode 0x{mode:02X}")
        return None

    def _handle_read(self, register: int) -> Optional[bytes]:
        if register == CMD_BASIC_INFO:
            return build_frame(register, STATUS_OK, self.basic_info_payload())
        if register == CMD_CELL_VOLTAGES:
            return build_frame(register, STATUS_OK, self.cell_voltages_payload())
        if register == CMD_VERSION:
            return build_frame(register, STATUS_OK, self.state.hardware_version.encode("ascii"))
        logger.warning(f"[SIM] Unknown read register 0x{register:02X}")
        return build_frame(register, STATUS_REJECTED)

    def _handle_write(self, register: int, data: bytes) -> bytes:
        if register == REG_ENTER_FACTORY:
            if data != FACTORY_UNLOCK:
                return build_frame(register, STATUS_REJECTED)
            self.factory_mode = True
            return build_frame(register, STATUS_OK)

        if not self.factory_mode:
            return build_frame(register, STATUS_REJECTED)

        if register == REG_DEVICE_NAME:
            if not data or data[0] != len(data) - 1:
                return build_frame(register, STATUS_REJECTED)
            self._pending_name = data[1:].decode("ascii")
            return build_frame(register, STATUS_OK)

        if register == REG_EXIT_FACTORY:
            if data == EXIT_SAVE and self._pending_name is not None:
                logger.info(f"[SIM] Name changed to {self._pending_name!r}")
                self.state.name = self._pending_name
            self._pending_name = None
            self.factory_mode = False
            return build_frame(register, STATUS_OK)

        return build_frame(register, STATUS_REJECTED)

    def basic_info_payload(self) -> bytes:
        s = self.state
        if s.production_date is not None:
            d = s.production_date
            date_word = ((d.year - 2000) << 9) | (d.month << 5) | d.day
        else:
            date_word = 0
        fet = (0x01 if s.charge_mos else 0) | (0x02 if s.discharge_mos else 0)

        payload = struct.pack(
            ">HhHHHHHHHBBBBB",
            round(s.voltage * 100),
            round(s.current * 100),
            round(s.remaining_capacity * 100),
            round(s.nominal_capacity * 100),
            s.cycle_count,
            date_word,
            s.balance_status & 0xFFFF,
            (s.balance_status >> 16) & 0xFFFF,
            s.protection_status,
            s.software_version,
            s.rsoc,
            fet,
            len(s.cells),
            len(s.temperatures),
        )
        for temp in s.temperatures:
            payload += struct.pack(">H", round(temp * 10) + 2731)
        return payload

    def cell_voltages_payload(self) -> bytes:
        return b"".join(struct.pack(">H", round(v * 1000)) for v in self.state.cells)


class MockTransport:
    """
    Mock transport for testing.

    Writes go to a SimulatedBMS and its answers come back as notification
    chunks, the way a real BLE stack delivers them.
    """

    def __init__(
        self,
        bms: Optional[SimulatedBMS] = None,
        devices: Optional[Sequence[ScannedDevice]] = None,
        connection_delay: float = 0.01,
        fail_connect: bool = False,
        unavailable: bool = False,
        write_with_ack: bool = False,
        failing_write_modes: Sequence[bool] = (),
        respond: bool = True,
        chunk_size: int = 20,
        response_delay: float = 0.0,
    ) -> None:
        """
        Initialize mock transport.

        Args:
            bms: Simulated device answering commands
            devices: Advertisements reported by scan (default: the simulated BMS)
            connection_delay: Time a connect takes
            fail_connect: If True, every connect fails
            unavailable: If True, behave as if Bluetooth is off
            write_with_ack: Acknowledgement mode the link reports as preferred
            failing_write_modes: Write modes (with_ack values) that fail
            respond: If False, writes are never answered
            chunk_size: Notification size
            response_delay: Delay before a response is delivered
        """
        self.bms = bms or SimulatedBMS()
        self._devices = list(devices) if devices is not None else None
        self.connection_delay = connection_delay
        self.fail_connect = fail_connect
        self.unavailable = unavailable
        self.write_with_ack = write_with_ack
        self.failing_write_modes = set(failing_write_modes)
        self.respond = respond
        self.chunk_size = chunk_size
        self.response_delay = response_delay

        self._link: Optional[LinkHandle] = None
        self._on_chunk: Optional[Callable[[bytes], None]] = None
        self._on_lost: Optional[Callable[[], None]] = None
        self._scan_stop: Optional[asyncio.Event] = None

        # Recorded traffic (for testing)
        self.writes: List[Tuple[bytes, bool]] = []
        self.connect_attempts = 0
        self.cancelled_connects = 0
        self.disconnects = 0

    @property
    def devices(self) -> List[ScannedDevice]:
        if self._devices is not None:
            return self._devices
        return [ScannedDevice(DEFAULT_DEVICE_ID, self.bms.state.name, -60, (BMS_SERVICE_UUID,))]

    @property
    def is_connected(self) -> bool:
        return self._link is not None

    async def scan(
        self,
        service_uuids: List[str],
        on_found: Callable[[ScannedDevice], None],
        duration: float,
    ) -> None:
        """Report the configured devices, then wait out the scan"""
        if self.unavailable:
            raise TransportUnavailable("[MOCK] Bluetooth is powered off")

        logger.info(f"[MOCK] Scanning for {duration}s")
        self._scan_stop = asyncio.Event()
        for device in self.devices:
            on_found(device)
        try:
            await asyncio.wait_for(self._scan_stop.wait(), duration)
        except asyncio.TimeoutError:
            pass
        finally:
            self._scan_stop = None

    async def stop_scan(self) -> None:
        if self._scan_stop is not None:
            self._scan_stop.set()

    async def connect(
        self,
        device_id: str,
        timeout: float,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> LinkHandle:
        """Simulate connection"""
        self.connect_attempts += 1
        logger.info(f"[MOCK] Connecting to {device_id}")
        if self.unavailable:
            raise TransportUnavailable("[MOCK] Bluetooth is powered off")

        try:
            await asyncio.sleep(min(self.connection_delay, timeout))
        except asyncio.CancelledError:
            self.cancelled_connects += 1
            logger.info("[MOCK] Connect cancelled")
            raise

        if self.connection_delay > timeout:
            raise ConnectTimeout(f"[MOCK] {device_id} did not answer within {timeout}s")
        if self.fail_connect:
            raise ConnectFailure(f"[MOCK] {device_id} refused the connection")

        self._link = LinkHandle(device_id=device_id, write_with_ack=self.write_with_ack, context=self)
        self._on_lost = on_lost
        logger.info("[MOCK] Connected successfully")
        return self._link

    async def disconnect(self, link: LinkHandle) -> None:
        """Simulate disconnection"""
        if link is not self._link:
            return
        logger.info("[MOCK] Disconnecting")
        self.disconnects += 1
        self._link = None
        self._on_chunk = None
        self._on_lost = None

    async def subscribe(self, link: LinkHandle, on_chunk: Callable[[bytes], None]) -> None:
        self._on_chunk = on_chunk

    async def write(self, link: LinkHandle, data: bytes, with_ack: bool) -> None:
        """Hand the command to the simulated BMS and schedule its answer"""
        if link is not self._link:
            raise WriteFailure("[MOCK] link is closed")
        if with_ack in self.failing_write_modes:
            raise WriteFailure(f"[MOCK] write {'with' if with_ack else 'without'} response not supported")

        self.writes.append((bytes(data), with_ack))
        if not self.respond:
            return

        response = self.bms.handle(data)
        if response is None:
            return
        chunks = [response[i:i + self.chunk_size] for i in range(0, len(response), self.chunk_size)]
        asyncio.get_running_loop().call_later(self.response_delay, self._deliver, link, chunks)

    def _deliver(self, link: LinkHandle, chunks: List[bytes]) -> None:
        for chunk in chunks:
            if link is not self._link or self._on_chunk is None:
                return
            self._on_chunk(chunk)

    def inject(self, data: bytes) -> None:
        """Push raw bytes into the notification path (for testing)"""
        if self._on_chunk is not None:
            self._on_chunk(bytes(data))

    def drop_link(self) -> None:
        """Simulate the device going out of range"""
        if self._link is None:
            return
        logger.info("[MOCK] Link lost")
        on_lost = self._on_lost
        self._link = None
        self._on_chunk = None
        self._on_lost = None
        if on_lost is not None:
            on_lost()

    @property
    def commands(self) -> List[bytes]:
        """Command frames written so far (for testing)"""
        return [data for data, _ in self.writes]


__all__ = ["BMSState", "SimulatedBMS", "MockTransport", "DEFAULT_DEVICE_ID"]
