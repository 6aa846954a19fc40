"""
Connection Supervisor - State machine for the single BMS link.

The Supervisor:
- Owns the ConnectionState and the open LinkHandle
- Drives scan / connect / disconnect through the Transport
- Runs the bounded auto-reconnect to the remembered device at startup
- Writes commands, retrying once in the alternate acknowledgement mode

Transitions only happen on the event loop thread, so they never overlap.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .correlator import Correlator
from .errors import (
    BMSError,
    ConnectFailure,
    ConnectTimeout,
    NotConnected,
    TransportUnavailable,
    WriteFailure,
)
from .interfaces import DeviceStore, Transport
from .protocol import BMS_SERVICE_CODES, BMS_SERVICE_UUIDS, matches_name
from .store import MemoryDeviceStore
from .types import (
    ConnectionState,
    DeviceInfo,
    LinkHandle,
    SavedDevice,
    ScannedDevice,
    SupervisorConfig,
)


logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown BMS"


def is_bms_device(device: ScannedDevice) -> bool:
    """Accept devices advertising a BMS service or carrying a BMS-like name"""
    for uuid in device.service_uuids:
        if any(code in uuid.lower() for code in BMS_SERVICE_CODES):
            return True
    return matches_name(device.name or "")


class ConnectionSupervisor:
    """
    Connection lifecycle state machine.

    disconnected -> scanning -> disconnected
    disconnected -> connecting -> connected | error
    connected -> disconnected
    """

    def __init__(
        self,
        transport: Transport,
        correlator: Correlator,
        store: Optional[DeviceStore] = None,
        config: Optional[SupervisorConfig] = None,
    ) -> None:
        """
        Initialize supervisor.

        Args:
            transport: Wireless link implementation
            correlator: Receives incoming chunks of the open link
            store: Remembered-device storage
            config: Timeouts and retry bounds
        """
        self.transport = transport
        self.correlator = correlator
        self.store = store if store is not None else MemoryDeviceStore()
        self.config = config or SupervisorConfig()

        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[BMSError] = None

        self._link: Optional[LinkHandle] = None
        self._write_with_ack = False
        self._connected_device: Optional[DeviceInfo] = None
        self._scanned: Dict[str, ScannedDevice] = {}
        self._auto_reconnecting = False

        # Serializes connect / auto-reconnect / disconnect sequences
        self._lock = asyncio.Lock()
        self._attempt: Optional[asyncio.Task] = None

        self._state_callbacks: List[Callable[[ConnectionState, ConnectionState], Any]] = []
        self._device_callbacks: List[Callable[[ScannedDevice], Any]] = []

    def add_state_callback(self, callback: Callable[[ConnectionState, ConnectionState], Any]) -> None:
        """
        Register callback for state changes.

        Callback signature: callback(old_state, new_state)
        """
        self._state_callbacks.append(callback)

    def add_device_callback(self, callback: Callable[[ScannedDevice], Any]) -> None:
        """Register callback for newly found devices during a scan"""
        self._device_callbacks.append(callback)

    # Scanning

    async def scan(self, duration: Optional[float] = None) -> List[ScannedDevice]:
        """
        Run one scan session.

        Previous results are discarded. Returns when the duration elapses
        or stop_scan() is called.

        Args:
            duration: Scan length in seconds (default from config)

        Returns:
            BMS-like devices found, in discovery order
        """
        if self.state not in (ConnectionState.DISCONNECTED, ConnectionState.ERROR):
            logger.warning(f"Cannot scan while {self.state.value}")
            return self.scanned_devices

        self._scanned = {}
        self._transition_to(ConnectionState.SCANNING)

        try:
            await self.transport.scan(
                BMS_SERVICE_UUIDS,
                self._on_device_found,
                duration if duration is not None else self.config.scan_duration,
            )
        except TransportUnavailable as e:
            logger.error(f"Scan failed, Bluetooth unavailable: {e}")
            self.last_error = e
            if self.state == ConnectionState.SCANNING:
                self._transition_to(ConnectionState.ERROR)
            return self.scanned_devices

        if self.state == ConnectionState.SCANNING:
            self._transition_to(ConnectionState.DISCONNECTED)

        logger.info(f"Scan finished, {len(self._scanned)} BMS device(s) found")
        return self.scanned_devices

    async def stop_scan(self) -> None:
        """Stop a running scan"""
        if self.state != ConnectionState.SCANNING:
            return
        await self.transport.stop_scan()
        self._transition_to(ConnectionState.DISCONNECTED)

    def _on_device_found(self, device: ScannedDevice) -> None:
        if device.id in self._scanned or not is_bms_device(device):
            return
        self._scanned[device.id] = device
        logger.info(f"Found {device.name or UNKNOWN_NAME} ({device.id}) RSSI {device.rssi}")

        for callback in self._device_callbacks:
            try:
                callback(device)
            except Exception as e:
                logger.error(f"Error in device callback: {e}", exc_info=True)

    # Connecting

    async def connect(self, device_id: str, name: Optional[str] = None) -> bool:
        """
        Connect to a device chosen by the user.

        Failure leaves the supervisor in ERROR with last_error set.

        Args:
            device_id: Identifier from a scan or the store
            name: Display name (defaults to the scanned or remembered name)

        Returns:
            True if connected
        """
        if self.state == ConnectionState.SCANNING:
            await self.stop_scan()

        async with self._lock:
            if self._link is not None:
                logger.info("Closing current link before connecting")
                self.correlator.cancel()
                await self._close_link()

            logger.info(f"Connecting to {device_id}")
            self._transition_to(ConnectionState.CONNECTING)

            error = await self._run_attempt(self._open_link(device_id), timeout=None)
            if error is not None:
                logger.error(f"Connection to {device_id} failed: {error}")
                self.last_error = error
                self._transition_to(ConnectionState.ERROR)
                return False

            scanned = self._scanned.get(device_id)
            display_name = name or (scanned.name if scanned else None) or self._saved_name(device_id)
            self._connected_device = DeviceInfo(
                id=device_id,
                name=display_name,
                rssi=scanned.rssi if scanned else -100,
            )
            self.store.save(device_id, display_name)
            self.last_error = None
            self._transition_to(ConnectionState.CONNECTED)
            logger.info(f"Connected to {display_name} ({device_id})")
            return True

    async def auto_reconnect(self) -> bool:
        """
        Reconnect to the remembered device, bounded by reconnect_timeout.

        Any failure or the supervisory timeout cancels the attempt in
        flight and ends in DISCONNECTED.

        Returns:
            True if connected
        """
        saved = self.store.load()
        if saved is None:
            return False

        async with self._lock:
            logger.info(f"Auto-reconnecting to {saved.name} ({saved.device_id})")
            self._auto_reconnecting = True
            self._transition_to(ConnectionState.CONNECTING)
            try:
                error = await self._run_attempt(
                    self._reconnect_attempts(saved.device_id),
                    timeout=self.config.reconnect_timeout,
                )
            finally:
                self._auto_reconnecting = False

            if error is not None:
                logger.warning(f"Auto-reconnect failed: {error}")
                self.last_error = error
                if self.state == ConnectionState.CONNECTING:
                    self._transition_to(ConnectionState.DISCONNECTED)
                return False

            self._connected_device = DeviceInfo(id=saved.device_id, name=saved.name)
            self.last_error = None
            self._transition_to(ConnectionState.CONNECTED)
            logger.info("Auto-reconnect successful")
            return True

    async def _reconnect_attempts(self, device_id: str) -> None:
        last_error: Optional[BMSError] = None
        for attempt in range(self.config.max_reconnect_attempts):
            if attempt:
                await asyncio.sleep(self.config.reconnect_delay)
            logger.info(f"Reconnect attempt {attempt + 1}/{self.config.max_reconnect_attempts}")
            try:
                await self._open_link(device_id)
                return
            except ConnectFailure as e:
                last_error = e
        raise last_error

    async def _run_attempt(self, coro, timeout: Optional[float]) -> Optional[BMSError]:
        """
        Run a connect coroutine as a cancellable task.

        disconnect() cancels it through self._attempt; the timeout cancels
        it too. Cleans up a half-open link in both cases.

        Returns:
            None on success, otherwise the error describing the failure
        """
        attempt = asyncio.ensure_future(coro)
        self._attempt = attempt
        try:
            done, _ = await asyncio.wait({attempt}, timeout=timeout)
            if not done:
                attempt.cancel()
                await asyncio.wait({attempt})
                if not attempt.cancelled() and attempt.exception() is not None:
                    logger.debug(f"Connect attempt ended with {attempt.exception()!r} after timeout")
                await self._close_link()
                return ConnectTimeout(f"no connection within {timeout}s")
            if attempt.cancelled():
                await self._close_link()
                return ConnectFailure("connect aborted")
            error = attempt.exception()
            if error is None:
                return None
            if isinstance(error, BMSError):
                return error
            logger.error(f"Unexpected connect error: {error}", exc_info=error)
            return ConnectFailure(str(error))
        finally:
            self._attempt = None

    async def _open_link(self, device_id: str) -> None:
        link = await self.transport.connect(
            device_id,
            self.config.connect_timeout,
            on_lost=self._on_link_lost,
        )
        self._link = link
        self._write_with_ack = link.write_with_ack
        self.correlator.reset()
        try:
            await self.transport.subscribe(link, self.correlator.on_chunk)
        except BMSError:
            await self._close_link()
            raise

    async def _close_link(self) -> None:
        link, self._link = self._link, None
        if link is None:
            return
        try:
            await self.transport.disconnect(link)
        except BMSError as e:
            logger.warning(f"Error closing link: {e}")

    def _on_link_lost(self) -> None:
        """Transport reports the link dropped on its own"""
        if self._link is None:
            return
        logger.warning(f"Link to {self._link.device_id} lost")
        self._link = None
        self.correlator.cancel()
        if self.state == ConnectionState.CONNECTED:
            self._transition_to(ConnectionState.DISCONNECTED)

    # Disconnecting

    async def disconnect(self, forget: bool = False) -> None:
        """
        Close the link.

        Args:
            forget: Also clear the remembered device (no auto-reconnect)
        """
        if self.state == ConnectionState.SCANNING:
            await self.stop_scan()

        # Abort a connect in progress instead of waiting for it
        if self._attempt is not None and not self._attempt.done():
            logger.info("Cancelling connect in progress")
            self._attempt.cancel()

        async with self._lock:
            self.correlator.cancel()
            await self._close_link()
            self._connected_device = None
            if forget:
                logger.info("Forgetting remembered device")
                self.store.clear()
            self._transition_to(ConnectionState.DISCONNECTED)

    # Writing

    async def write(self, data: bytes) -> None:
        """
        Write a command on the open link.

        Tries the link's preferred acknowledgement mode, then the other
        mode once. The mode that worked is kept for later writes.

        Raises:
            NotConnected: No open link
            WriteFailure: Both modes failed
        """
        link = self._link
        if link is None or self.state != ConnectionState.CONNECTED:
            raise NotConnected("not connected to a BMS")

        try:
            await self.transport.write(link, data, self._write_with_ack)
            return
        except WriteFailure as e:
            logger.warning(f"Write failed ({e}), trying alternate mode")

        alternate = not self._write_with_ack
        await self.transport.write(link, data, alternate)
        logger.info(f"Switching to write {'with' if alternate else 'without'} response")
        self._write_with_ack = alternate

    def remember_name(self, name: str) -> None:
        """Update the display name of the connected device"""
        if self._connected_device is None:
            return
        self._connected_device.name = name
        self.store.save(self._connected_device.id, name)

    def _saved_name(self, device_id: str) -> str:
        saved = self.store.load()
        if saved is not None and saved.device_id == device_id:
            return saved.name
        return UNKNOWN_NAME

    def _transition_to(self, new_state: ConnectionState) -> None:
        """
        Transition to new state.

        Args:
            new_state: State to transition to
        """
        if new_state == self.state:
            return

        old_state = self.state
        logger.info(f"State transition: {old_state.value} -> {new_state.value}")
        self.state = new_state

        for callback in self._state_callbacks:
            try:
                callback(old_state, new_state)
            except Exception as e:
                logger.error(f"Error in state callback: {e}", exc_info=True)

    # Public properties for UI/monitoring

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._link is not None

    @property
    def link(self) -> Optional[LinkHandle]:
        return self._link

    @property
    def connected_device(self) -> Optional[DeviceInfo]:
        return self._connected_device

    @property
    def scanned_devices(self) -> List[ScannedDevice]:
        return list(self._scanned.values())

    @property
    def saved_device(self) -> Optional[SavedDevice]:
        return self.store.load()

    @property
    def is_auto_reconnecting(self) -> bool:
        return self._auto_reconnecting

    @property
    def write_with_ack(self) -> bool:
        """Acknowledgement mode currently used for writes"""
        return self._write_with_ack
