"""
Core data types for the SmartBMS monitor.

All the data structures that flow through the engine, fully typed.
Telemetry objects are immutable: every read produces fresh ones.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum, IntFlag
from typing import Any, List, Optional, Tuple
import time


class ConnectionState(Enum):
    """Connection supervisor state machine states"""
    DISCONNECTED = "disconnected"  # Idle, no link
    SCANNING = "scanning"          # Looking for devices
    CONNECTING = "connecting"      # Link being established
    CONNECTED = "connected"        # Link up, commands allowed
    ERROR = "error"                # Last manual operation failed


class ProtectionBit(IntFlag):
    """Bit positions of the protection status word"""
    CELL_OVERVOLTAGE = 0x0001
    CELL_UNDERVOLTAGE = 0x0002
    PACK_OVERVOLTAGE = 0x0004
    PACK_UNDERVOLTAGE = 0x0008
    CHARGE_OVERTEMPERATURE = 0x0010
    CHARGE_UNDERTEMPERATURE = 0x0020
    DISCHARGE_OVERTEMPERATURE = 0x0040
    DISCHARGE_UNDERTEMPERATURE = 0x0080
    CHARGE_OVERCURRENT = 0x0100
    DISCHARGE_OVERCURRENT = 0x0200
    SHORT_CIRCUIT = 0x0400
    IC_ERROR = 0x0800
    MOS_LOCK = 0x1000


PROTECTION_LABELS = [
    (ProtectionBit.CELL_OVERVOLTAGE, "Cell Overvoltage"),
    (ProtectionBit.CELL_UNDERVOLTAGE, "Cell Undervoltage"),
    (ProtectionBit.PACK_OVERVOLTAGE, "Pack Overvoltage"),
    (ProtectionBit.PACK_UNDERVOLTAGE, "Pack Undervoltage"),
    (ProtectionBit.CHARGE_OVERTEMPERATURE, "Charge Over Temperature"),
    (ProtectionBit.CHARGE_UNDERTEMPERATURE, "Charge Under Temperature"),
    (ProtectionBit.DISCHARGE_OVERTEMPERATURE, "Discharge Over Temperature"),
    (ProtectionBit.DISCHARGE_UNDERTEMPERATURE, "Discharge Under Temperature"),
    (ProtectionBit.CHARGE_OVERCURRENT, "Charge Overcurrent"),
    (ProtectionBit.DISCHARGE_OVERCURRENT, "Discharge Overcurrent"),
    (ProtectionBit.SHORT_CIRCUIT, "Short Circuit"),
    (ProtectionBit.IC_ERROR, "IC Error"),
    (ProtectionBit.MOS_LOCK, "MOS Locked"),
]

REFRESH_INTERVALS = (1.0, 2.0, 5.0, 10.0)   # Selectable auto-refresh periods (s)


def _flag(bit: ProtectionBit) -> property:
    return property(lambda self: bool(self.bits & bit))


@dataclass(frozen=True)
class ProtectionFlags:
    """
    Named view over the protection status word.

    The integer is the only stored value; every flag is computed from it.
    Bits above MOS_LOCK are ignored.
    """
    bits: int = 0

    cell_overvoltage = _flag(ProtectionBit.CELL_OVERVOLTAGE)
    cell_undervoltage = _flag(ProtectionBit.CELL_UNDERVOLTAGE)
    pack_overvoltage = _flag(ProtectionBit.PACK_OVERVOLTAGE)
    pack_undervoltage = _flag(ProtectionBit.PACK_UNDERVOLTAGE)
    charge_overtemperature = _flag(ProtectionBit.CHARGE_OVERTEMPERATURE)
    charge_undertemperature = _flag(ProtectionBit.CHARGE_UNDERTEMPERATURE)
    discharge_overtemperature = _flag(ProtectionBit.DISCHARGE_OVERTEMPERATURE)
    discharge_undertemperature = _flag(ProtectionBit.DISCHARGE_UNDERTEMPERATURE)
    charge_overcurrent = _flag(ProtectionBit.CHARGE_OVERCURRENT)
    discharge_overcurrent = _flag(ProtectionBit.DISCHARGE_OVERCURRENT)
    short_circuit = _flag(ProtectionBit.SHORT_CIRCUIT)
    ic_error = _flag(ProtectionBit.IC_ERROR)
    mos_lock = _flag(ProtectionBit.MOS_LOCK)

    @property
    def any_active(self) -> bool:
        """Check if any defined protection is tripped"""
        return any(self.bits & bit for bit, _ in PROTECTION_LABELS)

    @property
    def active_names(self) -> List[str]:
        """Human readable names of the tripped protections"""
        return [label for bit, label in PROTECTION_LABELS if self.bits & bit]


@dataclass(frozen=True)
class BasicTelemetry:
    """
    Decoded basic-info (0x03) response.

    Produced fresh on every successful read, never mutated.
    """
    voltage: float                   # Pack voltage (V)
    current: float                   # Pack current (A), positive = charging
    remaining_capacity: float        # Ah
    nominal_capacity: float          # Ah
    soc: int                         # Derived state of charge (%)
    cycle_count: int
    production_date: Optional[date]
    balance_status: int              # Balancing bitmask, cells 1-16
    balance_status_high: int         # Balancing bitmask, cells 17-32
    protection_status: int           # Protection bitmask
    software_version: int
    rsoc: int                        # SOC as reported by the device (%)
    charge_mos_enabled: bool
    discharge_mos_enabled: bool
    cell_count: int
    ntc_count: int
    temperatures: Tuple[float, ...] = ()   # deg C, one per NTC

    @property
    def protection(self) -> ProtectionFlags:
        """Protection word as named flags"""
        from .codec import decode_protection_flags
        return decode_protection_flags(self.protection_status)

    @property
    def balancing_cells(self) -> List[int]:
        """1-based indices of the cells currently balancing"""
        mask = (self.balance_status_high << 16) | self.balance_status
        return [i + 1 for i in range(32) if mask & (1 << i)]

    @property
    def power(self) -> float:
        """Pack power in W (negative while discharging)"""
        return round(self.voltage * self.current, 2)

    @property
    def is_charging(self) -> bool:
        return self.current > 0


@dataclass(frozen=True)
class CellTelemetry:
    """
    Decoded cell-voltage (0x04) response.

    Statistics are computed from the voltages; ties resolve to the
    first matching cell.
    """
    voltages: Tuple[float, ...]      # V, cell 1 first

    @property
    def cell_count(self) -> int:
        return len(self.voltages)

    @property
    def max_voltage(self) -> float:
        return max(self.voltages)

    @property
    def min_voltage(self) -> float:
        return min(self.voltages)

    @property
    def max_voltage_cell(self) -> int:
        """1-based index of the highest cell"""
        return self.voltages.index(self.max_voltage) + 1

    @property
    def min_voltage_cell(self) -> int:
        """1-based index of the lowest cell"""
        return self.voltages.index(self.min_voltage) + 1

    @property
    def average_voltage(self) -> float:
        return round(sum(self.voltages) / len(self.voltages), 3)

    @property
    def voltage_delta(self) -> float:
        """Spread between highest and lowest cell"""
        return round(self.max_voltage - self.min_voltage, 3)


@dataclass(frozen=True)
class ScannedDevice:
    """A device seen during one scan session"""
    id: str                          # Transport-assigned identifier (MAC / UUID)
    name: Optional[str] = None       # Advertised name
    rssi: int = -100                 # Signal strength (dBm)
    service_uuids: Tuple[str, ...] = ()


@dataclass
class DeviceInfo:
    """The device the supervisor is connected to"""
    id: str
    name: str
    rssi: int = -100


@dataclass(frozen=True)
class SavedDevice:
    """Device remembered for auto-reconnect"""
    device_id: str
    name: str = "Unknown BMS"


@dataclass
class LinkHandle:
    """
    An open link as handed out by a Transport.

    The engine only reads device_id and write_with_ack; context belongs
    to the transport that created it.
    """
    device_id: str
    write_with_ack: bool = False     # Preferred acknowledgement mode for writes
    context: Any = None


@dataclass(frozen=True)
class Snapshot:
    """
    Latest merged telemetry handed to consumers.

    Either part may be None when its read failed.
    """
    basic: Optional[BasicTelemetry] = None
    cells: Optional[CellTelemetry] = None
    timestamp: float = field(default_factory=time.time)
    error: Optional[str] = None

    @property
    def protection(self) -> Optional[ProtectionFlags]:
        return self.basic.protection if self.basic else None

    @property
    def is_complete(self) -> bool:
        """Check if both reads succeeded"""
        return self.basic is not None and self.cells is not None


@dataclass
class SupervisorConfig:
    """Configuration for the ConnectionSupervisor and command path"""
    connect_timeout: float = 10.0       # Single connect attempt (transport-level)
    reconnect_timeout: float = 15.0     # Bound on the whole startup auto-reconnect
    reconnect_delay: float = 2.0        # Pause between auto-reconnect attempts
    max_reconnect_attempts: int = 1     # Attempts inside the reconnect window
    scan_duration: float = 15.0         # Default scan session length
    command_timeout: float = 5.0        # Wait for a response frame

    def __post_init__(self) -> None:
        """Validate ranges"""
        assert self.connect_timeout > 0, f"connect_timeout must be positive: {self.connect_timeout}"
        assert self.reconnect_timeout > 0, f"reconnect_timeout must be positive: {self.reconnect_timeout}"
        assert self.max_reconnect_attempts >= 1, f"max_reconnect_attempts < 1: {self.max_reconnect_attempts}"
        assert self.command_timeout > 0, f"command_timeout must be positive: {self.command_timeout}"


@dataclass
class RefreshConfig:
    """Configuration for the RefreshScheduler"""
    interval: float = 2.0               # Seconds between read cycles
    settle_delay: float = 0.2           # Pause between basic-info and cell reads

    def __post_init__(self) -> None:
        assert self.interval > 0, f"interval must be positive: {self.interval}"
        assert self.settle_delay >= 0, f"settle_delay must not be negative: {self.settle_delay}"
