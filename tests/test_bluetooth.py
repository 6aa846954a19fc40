"""Tests for the Bleak transport with a stand-in client"""

import asyncio
import pytest

from smartbms.transport import bluetooth
from smartbms.transport.bluetooth import BleakTransport


class StalledClient:
    """BleakClient stand-in whose connect() never completes"""

    instances = []

    def __init__(self, device_id, disconnected_callback=None, timeout=10.0):
        self.device_id = device_id
        self.is_connected = False
        self.disconnect_calls = 0
        StalledClient.instances.append(self)

    async def connect(self):
        await asyncio.Event().wait()

    async def disconnect(self):
        self.disconnect_calls += 1
        return True


@pytest.fixture
def stalled_client(monkeypatch):
    StalledClient.instances = []
    monkeypatch.setattr(bluetooth, "BleakClient", StalledClient)
    return StalledClient


def test_cancelled_connect_closes_client(stalled_client):
    """Test a connect aborted by the caller's deadline does not leak the client"""
    async def run():
        transport = BleakTransport()
        task = asyncio.ensure_future(transport.connect("AA:BB:CC:DD:EE:FF", timeout=5.0))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        client, = stalled_client.instances
        assert client.device_id == "AA:BB:CC:DD:EE:FF"
        assert client.disconnect_calls == 1

    asyncio.run(run())
