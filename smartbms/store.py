"""
Remembered-device stores.

JsonDeviceStore keeps the last connected device in a small JSON state
file so the next start can reconnect without scanning.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from .types import SavedDevice


logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path.home() / ".smartbms_state.json"


class MemoryDeviceStore:
    """In-process store, forgets everything on exit"""

    def __init__(self, saved: Optional[SavedDevice] = None) -> None:
        self._saved = saved

    def load(self) -> Optional[SavedDevice]:
        return self._saved

    def save(self, device_id: str, name: str) -> None:
        self._saved = SavedDevice(device_id=device_id, name=name)

    def clear(self) -> None:
        self._saved = None


class JsonDeviceStore:
    """Store backed by a JSON file"""

    def __init__(self, path: Union[str, Path, None] = None) -> None:
        """
        Args:
            path: State file location (default: ~/.smartbms_state.json)
        """
        self.path = Path(path) if path else DEFAULT_STATE_FILE

    def load(self) -> Optional[SavedDevice]:
        """Load the remembered device, None if missing or unreadable"""
        if not self.path.exists():
            return None
        try:
            state = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return None
        if not isinstance(state, dict):
            logger.warning(f"Ignoring state file {self.path}: expected an object")
            return None

        device_id = state.get("last_device_id")
        if not device_id:
            return None
        return SavedDevice(device_id=device_id, name=state.get("last_device_name") or "Unknown BMS")

    def save(self, device_id: str, name: str) -> None:
        state = {"last_device_id": device_id, "last_device_name": name}
        try:
            self.path.write_text(json.dumps(state, indent=2))
            logger.debug(f"Saved device {device_id} to {self.path}")
        except OSError as e:
            logger.warning(f"Could not save state: {e}")

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not clear state file {self.path}: {e}")
