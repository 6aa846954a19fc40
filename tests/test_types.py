"""Tests for core types"""

import pytest
import time
from datetime import date

from smartbms.codec import decode_protection_flags
from smartbms.types import (
    BasicTelemetry,
    CellTelemetry,
    ConnectionState,
    ProtectionBit,
    ProtectionFlags,
    RefreshConfig,
    Snapshot,
    SupervisorConfig,
)


def make_basic(**overrides) -> BasicTelemetry:
    values = dict(
        voltage=13.2,
        current=-1.5,
        remaining_capacity=80.0,
        nominal_capacity=100.0,
        soc=80,
        cycle_count=42,
        production_date=date(2023, 5, 17),
        balance_status=0,
        balance_status_high=0,
        protection_status=0,
        software_version=0x21,
        rsoc=80,
        charge_mos_enabled=True,
        discharge_mos_enabled=True,
        cell_count=4,
        ntc_count=2,
        temperatures=(25.0, 26.5),
    )
    values.update(overrides)
    return BasicTelemetry(**values)


def test_connection_state_values():
    """Test state names as shown to consumers"""
    assert [s.value for s in ConnectionState] == [
        "disconnected", "scanning", "connecting", "connected", "error"
    ]


def test_protection_flags_none():
    """Test an empty protection word"""
    flags = ProtectionFlags(0)
    assert flags.any_active is False
    assert flags.active_names == []
    assert flags.short_circuit is False


def test_protection_flags_named_bits():
    """Test each flag follows its bit"""
    flags = ProtectionFlags(ProtectionBit.CELL_OVERVOLTAGE | ProtectionBit.SHORT_CIRCUIT)
    assert flags.cell_overvoltage is True
    assert flags.short_circuit is True
    assert flags.cell_undervoltage is False
    assert flags.mos_lock is False
    assert flags.active_names == ["Cell Overvoltage", "Short Circuit"]


def test_protection_flags_all_bits():
    """Test all thirteen protections"""
    flags = ProtectionFlags(0x1FFF)
    assert all([
        flags.cell_overvoltage, flags.cell_undervoltage,
        flags.pack_overvoltage, flags.pack_undervoltage,
        flags.charge_overtemperature, flags.charge_undertemperature,
        flags.discharge_overtemperature, flags.discharge_undertemperature,
        flags.charge_overcurrent, flags.discharge_overcurrent,
        flags.short_circuit, flags.ic_error, flags.mos_lock,
    ])
    assert len(flags.active_names) == 13


def test_protection_flags_ignore_undefined_bits():
    """Test bits above MOS lock do not count as protections"""
    flags = ProtectionFlags(0x8000)
    assert flags.any_active is False


def test_basic_telemetry_derived_values():
    """Test power, charging and protection projection"""
    basic = make_basic(protection_status=0x0002)
    assert basic.power == -19.8
    assert basic.is_charging is False
    assert basic.protection.cell_undervoltage is True

    charging = make_basic(current=2.0)
    assert charging.is_charging is True


def test_basic_telemetry_protection_uses_codec_projection():
    """Test bits above the 16-bit protection word are dropped"""
    basic = make_basic(protection_status=0x10400)
    assert basic.protection == decode_protection_flags(0x10400)
    assert basic.protection.bits == 0x0400
    assert basic.protection.short_circuit is True


def test_basic_telemetry_balancing_cells():
    """Test balance bitmasks map to 1-based cells"""
    basic = make_basic(balance_status=0b101, balance_status_high=0b1)
    assert basic.balancing_cells == [1, 3, 17]


def test_basic_telemetry_is_immutable():
    """Test telemetry cannot be changed after decoding"""
    basic = make_basic()
    with pytest.raises(AttributeError):
        basic.voltage = 12.0


def test_cell_telemetry_statistics():
    """Test min, max, average and delta"""
    cells = CellTelemetry(voltages=(3.301, 3.312, 3.298, 3.313))
    assert cells.cell_count == 4
    assert cells.max_voltage == 3.313
    assert cells.min_voltage == 3.298
    assert cells.max_voltage_cell == 4
    assert cells.min_voltage_cell == 3
    assert cells.average_voltage == 3.306
    assert cells.voltage_delta == 0.015


def test_cell_telemetry_tie_uses_first_cell():
    """Test equal voltages resolve to the lowest index"""
    cells = CellTelemetry(voltages=(3.300, 3.300, 3.300))
    assert cells.max_voltage_cell == 1
    assert cells.min_voltage_cell == 1
    assert cells.voltage_delta == 0.0


def test_snapshot_defaults():
    """Test an empty snapshot"""
    snapshot = Snapshot()
    assert snapshot.basic is None
    assert snapshot.cells is None
    assert snapshot.protection is None
    assert snapshot.is_complete is False
    assert snapshot.timestamp <= time.time()


def test_snapshot_protection_is_derived():
    """Test snapshot protection comes from the basic telemetry"""
    snapshot = Snapshot(basic=make_basic(protection_status=0x0400),
                        cells=CellTelemetry(voltages=(3.3,)))
    assert snapshot.protection.short_circuit is True
    assert snapshot.is_complete is True


def test_supervisor_config_defaults():
    """Test default timeouts"""
    config = SupervisorConfig()
    assert config.command_timeout == 5.0
    assert config.connect_timeout == 10.0
    assert config.reconnect_timeout == 15.0
    assert config.scan_duration == 15.0
    assert config.max_reconnect_attempts == 1


def test_supervisor_config_validation():
    """Test config validates ranges"""
    with pytest.raises(AssertionError):
        SupervisorConfig(command_timeout=0)

    with pytest.raises(AssertionError):
        SupervisorConfig(max_reconnect_attempts=0)


def test_refresh_config_validation():
    """Test refresh config validates ranges"""
    assert RefreshConfig().interval == 2.0
    assert RefreshConfig().settle_delay == 0.2

    with pytest.raises(AssertionError):
        RefreshConfig(interval=0)

    with pytest.raises(AssertionError):
        RefreshConfig(settle_delay=-1)
