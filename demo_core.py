#!/usr/bin/env python3
"""
SmartBMS Core Demo - Simple example application.

Drives the engine against a simulated BMS: scan, connect, auto-refresh,
background pause, rename, link loss and auto-reconnect.
"""

import asyncio
import logging
import sys

from smartbms.engine import BMSEngine
from smartbms.store import MemoryDeviceStore
from smartbms.transport import MockTransport
from smartbms.types import ConnectionState, RefreshConfig, Snapshot, SupervisorConfig


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout
)

logger = logging.getLogger(__name__)


def describe(snapshot: Snapshot) -> str:
    """One status line for a snapshot"""
    if snapshot.basic is None:
        return f"error: {snapshot.error}"
    basic = snapshot.basic
    line = (
        f"{basic.voltage:.2f} V | {basic.current:+.2f} A | {basic.power:+.1f} W | "
        f"SOC {basic.soc}% | {basic.cycle_count} cycles"
    )
    if snapshot.cells is not None:
        cells = snapshot.cells
        line += f" | cells {cells.min_voltage:.3f}-{cells.max_voltage:.3f} V (delta {cells.voltage_delta * 1000:.0f} mV)"
    if basic.protection.any_active:
        line += f" | PROTECTION: {', '.join(basic.protection.active_names)}"
    return line


async def run_demo():
    """Run a simple demo with the simulated BMS"""

    logger.info("=" * 60)
    logger.info("SmartBMS Core Demo")
    logger.info("=" * 60)

    transport = MockTransport(connection_delay=0.2, response_delay=0.05)
    store = MemoryDeviceStore()
    engine = BMSEngine(
        transport,
        store=store,
        supervisor_config=SupervisorConfig(scan_duration=1.0),
        refresh_config=RefreshConfig(interval=1.0),
    )

    def on_state_change(old_state: ConnectionState, new_state: ConnectionState):
        logger.info(f"STATE CHANGE: {old_state.value} -> {new_state.value}")

    def on_snapshot(snapshot: Snapshot):
        logger.info(f"Snapshot: {describe(snapshot)}")

    engine.add_state_callback(on_state_change)
    engine.add_snapshot_callback(on_snapshot)

    # Nothing remembered yet, so startup does not connect
    await engine.start()

    logger.info("Scanning...")
    devices = await engine.start_scan()
    if not devices:
        logger.error("No BMS found")
        return

    device = devices[0]
    logger.info(f"Connecting to {device.name} ({device.id})...")
    if not await engine.connect(device.id):
        logger.error(f"Connect failed: {engine.last_error}")
        return

    version = await engine.read_version()
    logger.info(f"Hardware version: {version}")

    logger.info("Auto-refresh every 1s for 3s...")
    engine.set_auto_refresh(True, 1.0)
    await asyncio.sleep(3.2)

    logger.info("App goes to background (refresh paused)...")
    engine.set_foreground(False)
    await asyncio.sleep(2.0)
    engine.set_foreground(True)
    logger.info("App back in foreground")
    await asyncio.sleep(1.2)

    engine.set_auto_refresh(False)
    logger.info("Renaming BMS...")
    renamed = await engine.write_device_name("Camper Battery")
    logger.info(f"Rename {'succeeded' if renamed else 'failed'}: {engine.connected_device}")

    logger.info("Simulating link loss...")
    transport.drop_link()
    await asyncio.sleep(0.1)

    logger.info("Restarting: auto-reconnect to the remembered device...")
    if await engine.start():
        logger.info(f"Back online with {engine.connected_device.name}")
        await asyncio.sleep(1.2)

    logger.info("-" * 60)
    logger.info("Demo complete. Shutting down...")
    await engine.disconnect(forget=True)
    await engine.close()

    logger.info("=" * 60)
    logger.info(f"Demo finished successfully! ({transport.bms.state.command_count} commands answered)")
    logger.info("=" * 60)


def main():
    """Main entry point"""
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        logger.info("\nDemo interrupted by user")
    except Exception as e:
        logger.error(f"Demo failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
