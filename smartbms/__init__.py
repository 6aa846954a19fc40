"""
SmartBMS - Protocol engine for JBD / Xiaoxiang BLE battery management units.

This package contains the core logic for monitoring a BMS over BLE:
- Protocol / Codec: Frame building, validation and telemetry decoding
- Correlator: Reassembles notification chunks and pairs them with commands
- Supervisor: Connection state machine, auto-reconnect, write fallback
- Scheduler: Foreground-gated periodic refresh
- Engine: Facade tying it all together for a front end
"""

from .types import (
    BasicTelemetry,
    CellTelemetry,
    ConnectionState,
    ProtectionFlags,
    ScannedDevice,
    Snapshot,
    SupervisorConfig,
    RefreshConfig,
)
from .interfaces import (
    DeviceStore,
    Transport,
)
from .errors import BMSError
from .engine import BMSEngine

__all__ = [
    "BasicTelemetry",
    "CellTelemetry",
    "ConnectionState",
    "ProtectionFlags",
    "ScannedDevice",
    "Snapshot",
    "SupervisorConfig",
    "RefreshConfig",
    "DeviceStore",
    "Transport",
    "BMSError",
    "BMSEngine",
]
