#!/usr/bin/env python3
"""
SmartBMS Environment Configuration Helper

Provides easy access to .env configuration for the monitor and demos.
Automatically loads .env file and provides defaults.
"""

import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from smartbms.store import DEFAULT_STATE_FILE, JsonDeviceStore
from smartbms.types import REFRESH_INTERVALS, RefreshConfig, SupervisorConfig


class BMSConfig:
    """Configuration manager for SmartBMS tools"""

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration

        Args:
            env_file: Path to .env file (default: .env in current directory)
        """
        self._loaded = False

        env_path = Path(env_file) if env_file is not None else Path(".env")
        if env_path.exists():
            load_dotenv(env_path)
            self._loaded = True

    @property
    def device_id(self) -> Optional[str]:
        """BMS address to connect to without scanning"""
        return os.getenv("BMS_DEVICE_ID") or None

    @property
    def command_timeout(self) -> float:
        """Response timeout in seconds (default: 5)"""
        return float(os.getenv("BMS_COMMAND_TIMEOUT", "5"))

    @property
    def connect_timeout(self) -> float:
        """Single connect attempt timeout in seconds (default: 10)"""
        return float(os.getenv("BMS_CONNECT_TIMEOUT", "10"))

    @property
    def reconnect_timeout(self) -> float:
        """Startup auto-reconnect bound in seconds (default: 15)"""
        return float(os.getenv("BMS_RECONNECT_TIMEOUT", "15"))

    @property
    def scan_duration(self) -> float:
        """Scan length in seconds (default: 15)"""
        return float(os.getenv("BMS_SCAN_DURATION", "15"))

    @property
    def refresh_interval(self) -> float:
        """Auto-refresh period in seconds (default: 2)"""
        return float(os.getenv("BMS_REFRESH_INTERVAL", "2"))

    @property
    def state_file(self) -> Path:
        """Remembered-device file (default: ~/.smartbms_state.json)"""
        value = os.getenv("BMS_STATE_FILE")
        return Path(value).expanduser() if value else DEFAULT_STATE_FILE

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Returns:
            (is_valid, list_of_errors)
        """
        errors = []

        for name in ("BMS_COMMAND_TIMEOUT", "BMS_CONNECT_TIMEOUT",
                     "BMS_RECONNECT_TIMEOUT", "BMS_SCAN_DURATION"):
            value = os.getenv(name)
            if value is None:
                continue
            if not self._is_positive_number(value):
                errors.append(f"{name} must be a positive number of seconds, got {value!r}")

        interval = os.getenv("BMS_REFRESH_INTERVAL")
        if interval is not None:
            if not self._is_positive_number(interval) or float(interval) not in REFRESH_INTERVALS:
                allowed = ", ".join(f"{i:g}" for i in REFRESH_INTERVALS)
                errors.append(f"BMS_REFRESH_INTERVAL must be one of {allowed}, got {interval!r}")

        if self.device_id and not self._is_valid_address(self.device_id):
            errors.append("BMS_DEVICE_ID has invalid format (expected AA:BB:CC:DD:EE:FF or a UUID)")

        return len(errors) == 0, errors

    @staticmethod
    def _is_positive_number(value: str) -> bool:
        try:
            return float(value) > 0
        except ValueError:
            return False

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """Check for a MAC address (Linux/Windows) or a CoreBluetooth UUID (macOS)"""
        parts = address.split(":")
        if len(parts) == 6:
            return all(len(part) == 2 and all(c in "0123456789abcdefABCDEF" for c in part) for part in parts)
        compact = address.replace("-", "")
        return len(compact) == 32 and all(c in "0123456789abcdefABCDEF" for c in compact)

    def supervisor_config(self) -> SupervisorConfig:
        return SupervisorConfig(
            connect_timeout=self.connect_timeout,
            reconnect_timeout=self.reconnect_timeout,
            scan_duration=self.scan_duration,
            command_timeout=self.command_timeout,
        )

    def refresh_config(self) -> RefreshConfig:
        return RefreshConfig(interval=self.refresh_interval)

    def device_store(self) -> JsonDeviceStore:
        return JsonDeviceStore(self.state_file)

    def print_status(self):
        """Print configuration status"""
        print("SmartBMS Configuration Status:")
        print(f"  .env loaded:        {'Yes' if self._loaded else 'No'}")
        print(f"  Device:             {self.device_id or '(not set, scan or remembered device)'}")
        print(f"  Command timeout:    {self.command_timeout}s")
        print(f"  Connect timeout:    {self.connect_timeout}s")
        print(f"  Reconnect timeout:  {self.reconnect_timeout}s")
        print(f"  Scan duration:      {self.scan_duration}s")
        print(f"  Refresh interval:   {self.refresh_interval}s")
        print(f"  State file:         {self.state_file}")

        is_valid, errors = self.validate()
        if is_valid:
            print("\n  Status: Configuration is valid")
        else:
            print("\n  Status: Configuration has errors:")
            for error in errors:
                print(f"    - {error}")


# Global config instance
_config = None

def get_config(reload: bool = False) -> BMSConfig:
    """
    Get the global configuration instance

    Args:
        reload: Force reload of .env file

    Returns:
        BMSConfig instance
    """
    global _config
    if _config is None or reload:
        _config = BMSConfig()
    return _config


def main():
    """Command-line utility to check configuration"""
    import argparse

    parser = argparse.ArgumentParser(
        description="SmartBMS Configuration Utility",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Check current configuration:
    python bms_config.py

  Validate configuration:
    python bms_config.py --validate

  Use custom .env file:
    python bms_config.py --env-file /path/to/.env
        """
    )

    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("--validate", action="store_true",
                       help="Validate configuration and exit with error if invalid")

    args = parser.parse_args()

    config = BMSConfig(args.env_file)
    config.print_status()

    if args.validate:
        is_valid, errors = config.validate()
        if not is_valid:
            print("\nValidation failed!")
            sys.exit(1)
        else:
            print("\nValidation passed!")


if __name__ == "__main__":
    main()
