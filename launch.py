#!/usr/bin/env python3
"""
SmartBMS Launcher - Easy start for battery monitoring

Usage:
    python launch.py                      # Monitor the configured or remembered BMS
    python launch.py --scan               # List nearby BMS devices
    python launch.py --mock               # Monitor a simulated BMS (testing)
    python launch.py --write-name NAME    # Rename the BMS
    python launch.py --decode "DD 03 ..." # Decode captured frames offline
    python launch.py --demo               # Run core demo
"""

import sys
import argparse
import asyncio
import logging

from bms_config import BMSConfig
from smartbms import codec
from smartbms.engine import BMSEngine
from smartbms.errors import DecodeError
from smartbms.protocol import CMD_BASIC_INFO, CMD_CELL_VOLTAGES, CMD_VERSION
from smartbms.types import REFRESH_INTERVALS, ConnectionState, Snapshot


def setup_logging(level: str = "INFO") -> None:
    """Configure logging"""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )


def create_engine(config: BMSConfig, use_mock: bool = False) -> BMSEngine:
    """Build an engine on the real or the simulated transport"""
    if use_mock:
        from smartbms.transport import MockTransport
        print("Using MOCK transport (no actual hardware)")
        transport = MockTransport(connection_delay=0.2, response_delay=0.05)
    else:
        from smartbms.transport.bluetooth import BleakTransport
        transport = BleakTransport(debug=logging.getLogger().isEnabledFor(logging.DEBUG))

    return BMSEngine(
        transport,
        store=config.device_store(),
        supervisor_config=config.supervisor_config(),
        refresh_config=config.refresh_config(),
    )


def print_snapshot(snapshot: Snapshot) -> None:
    if snapshot.basic is None:
        print(f"[!] {snapshot.error}")
        return
    basic = snapshot.basic
    state = "charging" if basic.is_charging else "discharging"
    print(f"{basic.voltage:6.2f} V  {basic.current:+7.2f} A  {basic.power:+8.1f} W  "
          f"SOC {basic.soc:3d}%  ({state})")
    print(f"  Capacity {basic.remaining_capacity:.1f}/{basic.nominal_capacity:.1f} Ah, "
          f"{basic.cycle_count} cycles, MOS charge={'on' if basic.charge_mos_enabled else 'off'} "
          f"discharge={'on' if basic.discharge_mos_enabled else 'off'}")
    if basic.temperatures:
        print(f"  Temperatures: {', '.join(f'{t:.1f} C' for t in basic.temperatures)}")
    if snapshot.cells is not None:
        cells = snapshot.cells
        print(f"  Cells: {' '.join(f'{v:.3f}' for v in cells.voltages)} V "
              f"(avg {cells.average_voltage:.3f}, delta {cells.voltage_delta * 1000:.0f} mV)")
    if basic.balancing_cells:
        print(f"  Balancing: cells {', '.join(str(c) for c in basic.balancing_cells)}")
    if basic.protection.any_active:
        print(f"  PROTECTION: {', '.join(basic.protection.active_names)}")


async def pick_device(engine: BMSEngine, config: BMSConfig) -> bool:
    """Connect to the configured device, the remembered one, or the first found"""
    if config.device_id:
        return await engine.connect(config.device_id)

    if await engine.start():
        return True

    print("Scanning for BMS devices...")
    devices = await engine.start_scan()
    if not devices:
        print("No BMS found")
        return False
    device = max(devices, key=lambda d: d.rssi)
    print(f"Connecting to {device.name or 'Unknown BMS'} ({device.id})")
    return await engine.connect(device.id)


async def run_scan(engine: BMSEngine) -> None:
    print("Scanning for BMS devices...")
    devices = await engine.start_scan()
    if not devices:
        print("No BMS found")
    for device in devices:
        print(f"  {device.id}  {device.rssi:4d} dBm  {device.name or 'Unknown BMS'}")


async def run_monitor(engine: BMSEngine, config: BMSConfig, interval: float) -> None:
    engine.add_snapshot_callback(print_snapshot)
    try:
        if not await pick_device(engine, config):
            print(f"Connection failed: {engine.last_error}")
            sys.exit(1)

        version = await engine.read_version()
        if version:
            print(f"Hardware version: {version}")

        engine.set_auto_refresh(True, interval)
        print("Monitoring - press Ctrl+C to stop")
        while engine.state == ConnectionState.CONNECTED:
            await asyncio.sleep(1.0)
        print(f"Link lost: {engine.last_error or engine.state.value}")
    finally:
        await engine.close()


async def run_write_name(engine: BMSEngine, config: BMSConfig, name: str) -> None:
    try:
        if not await pick_device(engine, config):
            print(f"Connection failed: {engine.last_error}")
            sys.exit(1)
        if await engine.write_device_name(name):
            print(f"BMS renamed to {name.strip()!r}")
        else:
            print(f"Rename failed: {engine.last_error or 'invalid name'}")
            sys.exit(1)
    finally:
        await engine.close()


def decode_capture(hex_text: str) -> None:
    """Decode a hex dump of one or more response frames"""
    try:
        data = bytes.fromhex(hex_text.replace(":", " "))
    except ValueError as e:
        print(f"Invalid hex: {e}")
        sys.exit(1)

    frames = codec.split_frames(data)
    if not frames:
        print("No complete frame found")
        return

    for frame in frames:
        command = frame[1]
        try:
            if command == CMD_BASIC_INFO:
                print_snapshot(Snapshot(basic=codec.decode_basic_info(frame)))
            elif command == CMD_CELL_VOLTAGES:
                cells = codec.decode_cell_voltages(frame)
                print(f"Cells ({cells.cell_count}): {' '.join(f'{v:.3f}' for v in cells.voltages)} V")
            elif command == CMD_VERSION:
                print(f"Version: {codec.decode_version(frame)}")
            else:
                print(f"Frame for register 0x{command:02X}, status 0x{frame[2]:02X}: {frame.hex(' ')}")
        except DecodeError as e:
            print(f"Cannot decode {frame.hex(' ')}: {e}")


def launch_demo() -> None:
    """Launch core demo"""
    print("Starting core demo...")
    from demo_core import main
    main()


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="SmartBMS - JBD / Xiaoxiang BLE battery monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python launch.py                      Monitor the configured or remembered BMS
  python launch.py --scan               List nearby BMS devices
  python launch.py --mock --interval 1  Monitor a simulated BMS every second
  python launch.py --forget             Forget the remembered BMS
  python launch.py --demo               Run core demo
        """
    )

    parser.add_argument("--scan", action="store_true", help="Scan for BMS devices and exit")
    parser.add_argument("--monitor", action="store_true", help="Monitor telemetry (default)")
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use mock transport for testing (no hardware needed)"
    )
    parser.add_argument("--demo", action="store_true", help="Run core demo")
    parser.add_argument("--write-name", metavar="NAME", help="Rename the BMS (1-31 ASCII characters)")
    parser.add_argument("--forget", action="store_true", help="Forget the remembered BMS")
    parser.add_argument("--decode", metavar="HEX", help="Decode captured response frames and exit")
    parser.add_argument(
        "--interval",
        type=float,
        choices=REFRESH_INTERVALS,
        default=None,
        help="Refresh interval in seconds"
    )
    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level"
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level)

    if args.decode:
        decode_capture(args.decode)
        return
    if args.demo:
        launch_demo()
        return

    config = BMSConfig(args.env_file)
    is_valid, errors = config.validate()
    if not is_valid:
        for error in errors:
            print(f"Config error: {error}")
        sys.exit(1)

    if args.forget:
        config.device_store().clear()
        print("Remembered BMS forgotten")
        return

    engine = create_engine(config, use_mock=args.mock)
    interval = args.interval or config.refresh_interval

    # Route to appropriate mode
    try:
        if args.scan:
            asyncio.run(run_scan(engine))
        elif args.write_name is not None:
            asyncio.run(run_write_name(engine, config, args.write_name))
        else:
            asyncio.run(run_monitor(engine, config, interval))
    except KeyboardInterrupt:
        print("\nShutting down...")


if __name__ == "__main__":
    main()
