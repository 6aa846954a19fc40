"""Tests for remembered-device stores"""

import asyncio
import json
import pytest

from smartbms.engine import BMSEngine
from smartbms.store import JsonDeviceStore, MemoryDeviceStore
from smartbms.transport import MockTransport
from smartbms.types import ConnectionState, SavedDevice


def test_memory_store_round_trip():
    store = MemoryDeviceStore()
    assert store.load() is None

    store.save("AA:BB:CC:DD:EE:FF", "Garage")
    assert store.load() == SavedDevice("AA:BB:CC:DD:EE:FF", "Garage")

    store.clear()
    assert store.load() is None


def test_json_store_round_trip(tmp_path):
    path = tmp_path / "state.json"
    store = JsonDeviceStore(path)
    assert store.load() is None

    store.save("AA:BB:CC:DD:EE:FF", "Garage")
    assert json.loads(path.read_text()) == {
        "last_device_id": "AA:BB:CC:DD:EE:FF",
        "last_device_name": "Garage",
    }
    assert JsonDeviceStore(path).load() == SavedDevice("AA:BB:CC:DD:EE:FF", "Garage")


def test_json_store_clear(tmp_path):
    path = tmp_path / "state.json"
    store = JsonDeviceStore(path)
    store.save("AA:BB:CC:DD:EE:FF", "Garage")

    store.clear()
    assert not path.exists()
    assert store.load() is None

    # Clearing twice is fine
    store.clear()


def test_json_store_corrupt_file(tmp_path):
    """Test an unreadable state file behaves like no remembered device"""
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert JsonDeviceStore(path).load() is None


@pytest.mark.parametrize("content", ["null", "[]", '"AA:BB:CC:DD:EE:FF"', "42"])
def test_json_store_non_object_file(tmp_path, content):
    """Test valid JSON that is not an object is ignored"""
    path = tmp_path / "state.json"
    path.write_text(content)
    assert JsonDeviceStore(path).load() is None


def test_start_with_non_object_state_file(tmp_path):
    """Test startup falls back to no remembered device"""
    path = tmp_path / "state.json"
    path.write_text("null")

    async def run():
        transport = MockTransport()
        engine = BMSEngine(transport, store=JsonDeviceStore(path))
        assert await engine.start() is False
        assert engine.state == ConnectionState.DISCONNECTED
        assert transport.connect_attempts == 0

    asyncio.run(run())


def test_json_store_missing_name(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"last_device_id": "AA:BB:CC:DD:EE:FF"}))
    assert JsonDeviceStore(path).load() == SavedDevice("AA:BB:CC:DD:EE:FF", "Unknown BMS")


def test_json_store_unwritable_location(tmp_path):
    """Test a failed save is logged, not raised"""
    store = JsonDeviceStore(tmp_path / "missing-dir" / "state.json")
    store.save("AA:BB:CC:DD:EE:FF", "Garage")
    assert store.load() is None
