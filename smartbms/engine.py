"""
BMS Engine - consumer-facing facade.

Wires the Correlator, ConnectionSupervisor and RefreshScheduler around a
Transport and exposes the operations a monitoring front end needs:
scan, connect, disconnect, refresh, auto-refresh and device renaming.

Consumer calls never raise protocol or link errors. Reads return None,
connect and rename return False, and the last failure is kept in
last_error.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

from . import codec
from .correlator import Correlator
from .errors import BMSError, NotConnected
from .interfaces import DeviceStore, Transport
from .protocol import (
    ENTER_FACTORY_MODE,
    EXIT_FACTORY_MODE,
    EXIT_FACTORY_MODE_SAVE,
    MAX_NAME_LENGTH,
    READ_BASIC_INFO,
    READ_CELL_VOLTAGES,
    READ_VERSION,
    REG_DEVICE_NAME,
    REG_ENTER_FACTORY,
    REG_EXIT_FACTORY,
    build_write_name,
)
from .scheduler import RefreshScheduler
from .supervisor import ConnectionSupervisor
from .types import (
    REFRESH_INTERVALS,
    BasicTelemetry,
    CellTelemetry,
    ConnectionState,
    DeviceInfo,
    RefreshConfig,
    SavedDevice,
    ScannedDevice,
    Snapshot,
    SupervisorConfig,
)


logger = logging.getLogger(__name__)

READ_FAILED = "Failed to read BMS data"


def valid_device_name(name: str) -> bool:
    """Check a name fits the device name register (1-31 printable ASCII)"""
    return 0 < len(name) <= MAX_NAME_LENGTH and all(0x20 <= ord(c) < 0x7F for c in name)


class BMSEngine:
    """
    Protocol engine for one BMS.

    All methods must be called from the same event loop.
    """

    def __init__(
        self,
        transport: Transport,
        store: Optional[DeviceStore] = None,
        supervisor_config: Optional[SupervisorConfig] = None,
        refresh_config: Optional[RefreshConfig] = None,
    ) -> None:
        """
        Initialize engine.

        Args:
            transport: Wireless link implementation
            store: Remembered-device storage (default: in memory)
            supervisor_config: Connection timeouts and retry bounds
            refresh_config: Auto-refresh interval and settle delay
        """
        supervisor_config = supervisor_config or SupervisorConfig()
        self.refresh_config = refresh_config or RefreshConfig()

        self.correlator = Correlator(self._write, timeout=supervisor_config.command_timeout)
        self.supervisor = ConnectionSupervisor(transport, self.correlator, store, supervisor_config)
        self.scheduler = RefreshScheduler(self._scheduled_cycle, self.refresh_config)

        self._snapshot: Optional[Snapshot] = None
        self._last_error: Optional[str] = None
        self._cycle_lock = asyncio.Lock()
        self._snapshot_callbacks: List[Callable[[Snapshot], Any]] = []

        self.supervisor.add_state_callback(self._on_state_change)

    # Observation

    def add_state_callback(self, callback: Callable[[ConnectionState, ConnectionState], Any]) -> None:
        """Register callback(old_state, new_state) for connection changes"""
        self.supervisor.add_state_callback(callback)

    def add_snapshot_callback(self, callback: Callable[[Snapshot], Any]) -> None:
        """Register callback(snapshot) for every completed read cycle"""
        self._snapshot_callbacks.append(callback)

    def add_device_callback(self, callback: Callable[[ScannedDevice], Any]) -> None:
        self.supervisor.add_device_callback(callback)

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    @property
    def snapshot(self) -> Optional[Snapshot]:
        """Latest telemetry, None until the first read or after disconnect"""
        return self._snapshot

    @property
    def scanned_devices(self) -> List[ScannedDevice]:
        return self.supervisor.scanned_devices

    @property
    def connected_device(self) -> Optional[DeviceInfo]:
        return self.supervisor.connected_device

    @property
    def saved_device(self) -> Optional[SavedDevice]:
        return self.supervisor.saved_device

    @property
    def is_auto_reconnecting(self) -> bool:
        return self.supervisor.is_auto_reconnecting

    @property
    def last_error(self) -> Optional[str]:
        """Description of the most recent failure"""
        if self._last_error is not None:
            return self._last_error
        error = self.supervisor.last_error
        return str(error) if error is not None else None

    @property
    def auto_refresh_enabled(self) -> bool:
        return self.scheduler.enabled

    @property
    def auto_refresh_interval(self) -> float:
        return self.scheduler.interval

    # Lifecycle

    async def start(self) -> bool:
        """
        Startup sequence: reconnect to the remembered device if there is one.

        Auto-refresh is switched on when the reconnect succeeds.

        Returns:
            True if connected
        """
        if not await self.supervisor.auto_reconnect():
            return False
        self.set_auto_refresh(True)
        return True

    async def start_scan(self, duration: Optional[float] = None) -> List[ScannedDevice]:
        """Scan for BMS devices, returns them when the scan ends"""
        return await self.supervisor.scan(duration)

    async def stop_scan(self) -> None:
        await self.supervisor.stop_scan()

    async def connect(self, device_id: str, name: Optional[str] = None) -> bool:
        """
        Connect to a device and take a first reading.

        Returns:
            True if connected
        """
        self._last_error = None
        if not await self.supervisor.connect(device_id, name):
            return False
        await self.refresh_now()
        return True

    async def disconnect(self, forget: bool = False) -> None:
        """
        Close the link and drop cached telemetry.

        Args:
            forget: Also clear the remembered device
        """
        self.scheduler.set_enabled(False)
        await self.supervisor.disconnect(forget=forget)
        self._snapshot = None
        self._last_error = None

    async def close(self) -> None:
        """Shut down: stop the scheduler and close the link, keeping the remembered device"""
        await self.scheduler.stop()
        await self.supervisor.disconnect()

    # Auto-refresh

    def set_auto_refresh(self, enabled: bool, interval: Optional[float] = None) -> None:
        """
        Enable or disable periodic reads.

        Args:
            enabled: Whether to refresh periodically
            interval: Period in seconds, one of REFRESH_INTERVALS

        Raises:
            ValueError: Interval not offered
        """
        if interval is not None and interval not in REFRESH_INTERVALS:
            raise ValueError(f"Refresh interval {interval}s not in {REFRESH_INTERVALS}")
        self.scheduler.set_enabled(enabled, interval)

    def set_foreground(self, active: bool) -> None:
        """Host application visibility; ticking pauses in the background"""
        self.scheduler.set_foreground(active)

    def _on_state_change(self, old_state: ConnectionState, new_state: ConnectionState) -> None:
        self.scheduler.set_connected(new_state == ConnectionState.CONNECTED)

    # Reading

    async def refresh_now(self) -> Optional[Snapshot]:
        """
        Run one read cycle: basic info, settle delay, cell voltages.

        Returns:
            The new snapshot, None if not connected or the link dropped mid-cycle
        """
        if not self.supervisor.is_connected:
            return None

        async with self._cycle_lock:
            basic = await self.read_basic_info()
            await asyncio.sleep(self.refresh_config.settle_delay)
            cells = await self.read_cell_voltages()

            if not self.supervisor.is_connected:
                logger.info("Link closed during read cycle, discarding results")
                return None

            snapshot = Snapshot(
                basic=basic,
                cells=cells,
                error=None if basic is not None else READ_FAILED,
            )
            self._snapshot = snapshot

        for callback in self._snapshot_callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in snapshot callback: {e}", exc_info=True)
        return snapshot

    async def _scheduled_cycle(self) -> None:
        await self.refresh_now()

    async def read_basic_info(self) -> Optional[BasicTelemetry]:
        """Query and decode basic info, None on any failure"""
        return await self._query(READ_BASIC_INFO, codec.decode_basic_info, "basic info")

    async def read_cell_voltages(self) -> Optional[CellTelemetry]:
        """Query and decode cell voltages, None on any failure"""
        return await self._query(READ_CELL_VOLTAGES, codec.decode_cell_voltages, "cell voltages")

    async def read_version(self) -> Optional[str]:
        """Query the hardware version string, None on any failure"""
        return await self._query(READ_VERSION, codec.decode_version, "version")

    async def _query(self, command: bytes, decode: Callable[[bytes], Any], what: str) -> Any:
        try:
            frame = await self.correlator.submit(command)
            result = decode(frame)
        except BMSError as e:
            logger.warning(f"Reading {what} failed: {e}")
            self._last_error = str(e)
            return None
        self._last_error = None
        return result

    # Writing

    async def write_device_name(self, name: str) -> bool:
        """
        Rename the BMS (the name it advertises over BLE).

        Enters factory mode, writes the name register and leaves factory
        mode saving. A failure after entering factory mode leaves it
        without saving.

        Args:
            name: New name, 1-31 printable ASCII characters after stripping

        Returns:
            True if the device acknowledged every step
        """
        name = name.strip()
        if not valid_device_name(name):
            logger.warning(f"Invalid device name {name!r}: need 1-{MAX_NAME_LENGTH} printable ASCII characters")
            return False
        if not self.supervisor.is_connected:
            logger.warning("Cannot write device name: not connected")
            self._last_error = str(NotConnected("not connected to a BMS"))
            return False

        async with self._cycle_lock:
            try:
                await self._command(ENTER_FACTORY_MODE, REG_ENTER_FACTORY)
            except BMSError as e:
                logger.error(f"Could not enter factory mode: {e}")
                self._last_error = str(e)
                return False

            try:
                await self._command(build_write_name(name), REG_DEVICE_NAME)
                await self._command(EXIT_FACTORY_MODE_SAVE, REG_EXIT_FACTORY)
            except BMSError as e:
                logger.error(f"Writing device name failed: {e}")
                self._last_error = str(e)
                await self._leave_factory_mode()
                return False

        logger.info(f"Device name set to {name!r}")
        self._last_error = None
        self.supervisor.remember_name(name)
        return True

    async def _command(self, command: bytes, register: int) -> None:
        frame = await self.correlator.submit(command)
        codec.decode_write_ack(frame, register)

    async def _leave_factory_mode(self) -> None:
        try:
            await self._command(EXIT_FACTORY_MODE, REG_EXIT_FACTORY)
        except BMSError as e:
            logger.warning(f"Could not leave factory mode cleanly: {e}")

    async def _write(self, data: bytes) -> None:
        await self.supervisor.write(data)
