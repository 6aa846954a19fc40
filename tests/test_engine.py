"""End-to-end tests for the engine against the simulated BMS"""

import asyncio
import pytest

from smartbms.engine import READ_FAILED, BMSEngine, valid_device_name
from smartbms.protocol import (
    CMD_CELL_VOLTAGES,
    ENTER_FACTORY_MODE,
    EXIT_FACTORY_MODE,
    EXIT_FACTORY_MODE_SAVE,
    REG_DEVICE_NAME,
    build_write_name,
)
from smartbms.store import MemoryDeviceStore
from smartbms.transport import DEFAULT_DEVICE_ID, BMSState, MockTransport, SimulatedBMS
from smartbms.types import ConnectionState, RefreshConfig, SavedDevice, SupervisorConfig


def make_engine(transport=None, store=None, command_timeout: float = 0.2, interval: float = 0.05):
    transport = transport or MockTransport()
    store = store if store is not None else MemoryDeviceStore()
    engine = BMSEngine(
        transport,
        store=store,
        supervisor_config=SupervisorConfig(
            connect_timeout=1.0,
            reconnect_timeout=1.0,
            scan_duration=0.05,
            command_timeout=command_timeout,
        ),
        refresh_config=RefreshConfig(interval=interval, settle_delay=0.01),
    )
    snapshots = []
    engine.add_snapshot_callback(snapshots.append)
    return engine, transport, snapshots


def test_connect_takes_first_reading():
    async def run():
        engine, _, snapshots = make_engine()
        devices = await engine.start_scan()
        assert [d.id for d in devices] == [DEFAULT_DEVICE_ID]

        assert await engine.connect(DEFAULT_DEVICE_ID) is True
        assert engine.state == ConnectionState.CONNECTED
        assert len(snapshots) == 1

        snapshot = engine.snapshot
        assert snapshot is snapshots[0]
        assert snapshot.is_complete
        assert snapshot.error is None
        assert snapshot.basic.voltage == 13.2
        assert snapshot.basic.current == -1.5
        assert snapshot.basic.temperatures == (25.0, 26.5)
        assert snapshot.cells.voltages == (3.301, 3.312, 3.298, 3.305)
        assert snapshot.protection.any_active is False
        await engine.close()

    asyncio.run(run())


def test_soc_derived_from_capacities():
    """Test 40.00 of 50.00 Ah reads as 80 %"""
    async def run():
        bms = SimulatedBMS(BMSState(remaining_capacity=40.0, nominal_capacity=50.0, rsoc=79))
        engine, _, _ = make_engine(MockTransport(bms=bms))
        await engine.connect(DEFAULT_DEVICE_ID)
        assert engine.snapshot.basic.soc == 80
        assert engine.snapshot.basic.rsoc == 79
        await engine.close()

    asyncio.run(run())


def test_small_notification_chunks():
    async def run():
        engine, _, _ = make_engine(MockTransport(chunk_size=3))
        await engine.connect(DEFAULT_DEVICE_ID)
        assert engine.snapshot.is_complete
        await engine.close()

    asyncio.run(run())


def test_refresh_requires_connection():
    async def run():
        engine, transport, snapshots = make_engine()
        assert await engine.refresh_now() is None
        assert await engine.read_basic_info() is None
        assert transport.writes == []
        assert snapshots == []

    asyncio.run(run())


def test_silent_device_gives_error_snapshot():
    """Test timeouts turn into an error snapshot, not an exception"""
    async def run():
        engine, _, snapshots = make_engine(MockTransport(respond=False), command_timeout=0.05)
        assert await engine.connect(DEFAULT_DEVICE_ID) is True

        snapshot = snapshots[-1]
        assert snapshot.basic is None
        assert snapshot.cells is None
        assert snapshot.error == READ_FAILED
        assert engine.last_error is not None
        await engine.close()

    asyncio.run(run())


def test_rejected_cell_read_keeps_basic_info():
    async def run():
        bms = SimulatedBMS()
        bms.rejected_registers.add(CMD_CELL_VOLTAGES)
        engine, _, _ = make_engine(MockTransport(bms=bms))
        await engine.connect(DEFAULT_DEVICE_ID)

        snapshot = engine.snapshot
        assert snapshot.basic is not None
        assert snapshot.cells is None
        assert snapshot.error is None
        await engine.close()

    asyncio.run(run())


def test_read_version():
    async def run():
        engine, _, _ = make_engine()
        await engine.connect(DEFAULT_DEVICE_ID)
        assert await engine.read_version() == "JBD-SP04S034-L4S-100A"
        await engine.close()

    asyncio.run(run())


def test_auto_refresh_produces_snapshots():
    async def run():
        engine, _, snapshots = make_engine(interval=0.05)
        await engine.connect(DEFAULT_DEVICE_ID)
        engine.set_auto_refresh(True)
        assert engine.auto_refresh_enabled is True

        await asyncio.sleep(0.3)
        assert len(snapshots) >= 3
        await engine.close()

    asyncio.run(run())


def test_auto_refresh_interval_must_be_offered():
    async def run():
        engine, _, _ = make_engine()
        with pytest.raises(ValueError):
            engine.set_auto_refresh(True, 3.0)

        engine.set_auto_refresh(False, 5.0)
        assert engine.auto_refresh_interval == 5.0

    asyncio.run(run())


def test_disable_auto_refresh_mid_cycle():
    """Test the running cycle completes and nothing further is scheduled"""
    async def run():
        engine, _, snapshots = make_engine(MockTransport(response_delay=0.05), interval=0.05)
        await engine.connect(DEFAULT_DEVICE_ID)
        engine.set_auto_refresh(True)

        while not engine.scheduler.cycle_running:
            await asyncio.sleep(0.005)
        before = len(snapshots)
        engine.set_auto_refresh(False)

        await asyncio.sleep(0.4)
        assert len(snapshots) == before + 1
        assert snapshots[-1].is_complete
        await engine.close()

    asyncio.run(run())


def test_background_pauses_auto_refresh():
    async def run():
        engine, _, snapshots = make_engine(interval=0.05)
        await engine.connect(DEFAULT_DEVICE_ID)
        engine.set_auto_refresh(True)
        engine.set_foreground(False)

        count = len(snapshots)
        await asyncio.sleep(0.2)
        assert len(snapshots) == count
        assert engine.snapshot is not None

        engine.set_foreground(True)
        await asyncio.sleep(0.2)
        assert len(snapshots) > count
        await engine.close()

    asyncio.run(run())


def test_disconnect_clears_snapshot_and_stops_refresh():
    async def run():
        store = MemoryDeviceStore()
        engine, _, _ = make_engine(store=store)
        await engine.connect(DEFAULT_DEVICE_ID)
        engine.set_auto_refresh(True)

        await engine.disconnect()
        assert engine.state == ConnectionState.DISCONNECTED
        assert engine.snapshot is None
        assert engine.auto_refresh_enabled is False
        assert engine.saved_device == SavedDevice(DEFAULT_DEVICE_ID, "xiaoxiang BMS")

        await engine.disconnect(forget=True)
        assert engine.saved_device is None

    asyncio.run(run())


def test_disconnect_mid_cycle_discards_results():
    async def run():
        engine, _, snapshots = make_engine(MockTransport(response_delay=0.2), command_timeout=1.0)
        await engine.connect(DEFAULT_DEVICE_ID)
        count = len(snapshots)

        refresh = asyncio.ensure_future(engine.refresh_now())
        await asyncio.sleep(0.05)
        await engine.disconnect()

        assert await asyncio.wait_for(refresh, 1.0) is None
        assert len(snapshots) == count
        assert engine.snapshot is None

    asyncio.run(run())


def test_link_loss_keeps_telemetry():
    async def run():
        engine, transport, _ = make_engine(interval=0.05)
        await engine.connect(DEFAULT_DEVICE_ID)
        engine.set_auto_refresh(True)

        transport.drop_link()
        assert engine.state == ConnectionState.DISCONNECTED
        assert engine.snapshot is not None
        assert engine.scheduler.is_ticking is False
        await engine.close()

    asyncio.run(run())


def test_start_reconnects_to_remembered_device():
    async def run():
        store = MemoryDeviceStore(SavedDevice(DEFAULT_DEVICE_ID, "Garage"))
        engine, _, snapshots = make_engine(store=store, interval=0.05)

        assert await engine.start() is True
        assert engine.connected_device.name == "Garage"
        assert engine.auto_refresh_enabled is True

        await asyncio.sleep(0.2)
        assert len(snapshots) >= 1
        await engine.close()

    asyncio.run(run())


def test_start_without_remembered_device():
    async def run():
        engine, transport, _ = make_engine()
        assert await engine.start() is False
        assert engine.state == ConnectionState.DISCONNECTED
        assert engine.auto_refresh_enabled is False
        assert transport.connect_attempts == 0

    asyncio.run(run())


def test_start_with_unreachable_device():
    async def run():
        store = MemoryDeviceStore(SavedDevice(DEFAULT_DEVICE_ID, "Garage"))
        engine, _, _ = make_engine(MockTransport(fail_connect=True), store=store)

        assert await engine.start() is False
        assert engine.state == ConnectionState.DISCONNECTED
        assert engine.is_auto_reconnecting is False
        assert engine.last_error is not None

    asyncio.run(run())


def test_write_device_name():
    """Test the factory mode sequence and the remembered name"""
    async def run():
        store = MemoryDeviceStore()
        engine, transport, _ = make_engine(store=store)
        await engine.connect(DEFAULT_DEVICE_ID)
        sent_before = len(transport.commands)

        assert await engine.write_device_name("  Camper Battery ") is True
        assert transport.commands[sent_before:] == [
            ENTER_FACTORY_MODE,
            build_write_name("Camper Battery"),
            EXIT_FACTORY_MODE_SAVE,
        ]
        assert transport.bms.state.name == "Camper Battery"
        assert engine.connected_device.name == "Camper Battery"
        assert store.load().name == "Camper Battery"
        await engine.close()

    asyncio.run(run())


def test_write_device_name_rejected_leaves_factory_mode():
    async def run():
        bms = SimulatedBMS()
        bms.rejected_registers.add(REG_DEVICE_NAME)
        engine, transport, _ = make_engine(MockTransport(bms=bms))
        await engine.connect(DEFAULT_DEVICE_ID)

        assert await engine.write_device_name("Camper") is False
        assert transport.commands[-1] == EXIT_FACTORY_MODE
        assert bms.factory_mode is False
        assert bms.state.name == "xiaoxiang BMS"
        assert engine.last_error is not None
        await engine.close()

    asyncio.run(run())


@pytest.mark.parametrize("name", ["", "   ", "x" * 32, "Café", "tab\tname"])
def test_write_device_name_invalid(name):
    async def run():
        engine, transport, _ = make_engine()
        await engine.connect(DEFAULT_DEVICE_ID)
        sent_before = len(transport.commands)

        assert await engine.write_device_name(name) is False
        assert len(transport.commands) == sent_before
        await engine.close()

    asyncio.run(run())


def test_write_device_name_requires_connection():
    async def run():
        engine, transport, _ = make_engine()
        assert await engine.write_device_name("Camper") is False
        assert transport.writes == []

    asyncio.run(run())


def test_valid_device_name():
    assert valid_device_name("x" * 31)
    assert not valid_device_name("x" * 32)
    assert not valid_device_name("")
