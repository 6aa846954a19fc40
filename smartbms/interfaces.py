"""
Core interfaces (protocols) for pluggable components.

These define the contracts the engine drives. The wireless stack and
the preference storage live outside the engine and plug in here.
"""

from typing import Callable, List, Optional, Protocol

from .types import LinkHandle, SavedDevice, ScannedDevice


class Transport(Protocol):
    """
    Interface for the wireless link (BLE via bleak, mock, ...).

    Implementations translate their own failures into smartbms.errors:
    TransportUnavailable, ConnectFailure / ConnectTimeout, WriteFailure.
    """

    async def scan(
        self,
        service_uuids: List[str],
        on_found: Callable[[ScannedDevice], None],
        duration: float,
    ) -> None:
        """
        Report nearby devices until duration elapses or stop_scan() is called.

        Args:
            service_uuids: Service UUIDs worth looking for (a hint, not a strict filter)
            on_found: Called for every advertisement seen
            duration: Scan length in seconds
        """
        ...

    async def stop_scan(self) -> None:
        """End a running scan early. Safe to call when not scanning."""
        ...

    async def connect(
        self,
        device_id: str,
        timeout: float,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> LinkHandle:
        """
        Open a link to a device.

        Args:
            device_id: Identifier reported by scan()
            timeout: Single attempt timeout in seconds
            on_lost: Called if the link drops without disconnect() being called

        Returns:
            Handle for the open link
        """
        ...

    async def disconnect(self, link: LinkHandle) -> None:
        """Close a link. Must not raise for an already closed link."""
        ...

    async def write(self, link: LinkHandle, data: bytes, with_ack: bool) -> None:
        """
        Write one command.

        Args:
            link: Open link
            data: Command bytes
            with_ack: Use write-with-response instead of write-without-response
        """
        ...

    async def subscribe(self, link: LinkHandle, on_chunk: Callable[[bytes], None]) -> None:
        """Deliver every incoming notification chunk to on_chunk, in order."""
        ...


class DeviceStore(Protocol):
    """
    Interface for the remembered-device preference.

    Read at startup for auto-reconnect, written after a successful connect.
    """

    def load(self) -> Optional[SavedDevice]:
        ...

    def save(self, device_id: str, name: str) -> None:
        ...

    def clear(self) -> None:
        ...
