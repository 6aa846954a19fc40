"""
JBD Smart BMS wire protocol - markers, command codes, frame building.

Every frame on the wire has the same shape:

    DD <b1> <b2> <len> <payload...> <chk_hi> <chk_lo> 77

Requests put the mode (0xA5 read, 0x5A write) in b1 and the register in b2.
Responses put the register in b1 and a status byte in b2.
The checksum always covers b2, len and payload.
"""

from typing import List

START_MARKER = 0xDD           # First byte of every frame
END_MARKER = 0x77             # Last byte of every frame
FRAME_OVERHEAD = 7            # start + b1 + b2 + len + 2 checksum bytes + end
MIN_FRAME_LENGTH = FRAME_OVERHEAD

MODE_READ = 0xA5
MODE_WRITE = 0x5A

STATUS_OK = 0x00

# Registers
CMD_BASIC_INFO = 0x03
CMD_CELL_VOLTAGES = 0x04
CMD_VERSION = 0x05
REG_ENTER_FACTORY = 0x00
REG_EXIT_FACTORY = 0x01
REG_DEVICE_NAME = 0xA1

FACTORY_UNLOCK = bytes([0x56, 0x78])   # Magic word that opens factory mode
EXIT_SAVE = bytes([0x28, 0x28])        # Leave factory mode and commit writes
EXIT_DISCARD = bytes([0x00, 0x00])     # Leave factory mode, drop writes

MAX_NAME_LENGTH = 31

# BLE GATT layout. Most modules use ff00/ff01/ff02, some a single ffe1 char.
BMS_SERVICE_UUID = "0000ff00-0000-1000-8000-00805f9b34fb"
BMS_NOTIFY_CHAR_UUID = "0000ff01-0000-1000-8000-00805f9b34fb"
BMS_WRITE_CHAR_UUID = "0000ff02-0000-1000-8000-00805f9b34fb"
BMS_SERVICE_UUID_ALT = "0000ffe0-0000-1000-8000-00805f9b34fb"
BMS_CHAR_UUID_ALT = "0000ffe1-0000-1000-8000-00805f9b34fb"

BMS_SERVICE_UUIDS = [BMS_SERVICE_UUID, BMS_SERVICE_UUID_ALT]
BMS_SERVICE_CODES = ["ff00", "ffe0"]

# Lowercase substrings seen in advertised names of these modules
BMS_NAME_PATTERNS = [
    "xiaoxiang",
    "jbd-",
    "jbd_",
    "sp",
    "bms",
    "smart bms",
    "jiabaida",
]


def checksum_of(body: bytes) -> int:
    """Two's complement of the byte sum, truncated to 16 bits."""
    return (0xFFFF - sum(body) + 1) & 0xFFFF


def build_frame(b1: int, b2: int, payload: bytes = b"") -> bytes:
    """Wrap a payload in markers, length and checksum."""
    if len(payload) > 0xFF:
        raise ValueError(f"Payload too long: {len(payload)} bytes")
    body = bytes([b2, len(payload)]) + bytes(payload)
    chk = checksum_of(body)
    return bytes([START_MARKER, b1]) + body + bytes([chk >> 8, chk & 0xFF, END_MARKER])


def build_read(register: int) -> bytes:
    """Build a read request for a register."""
    return build_frame(MODE_READ, register)


def build_write(register: int, data: bytes) -> bytes:
    """Build a write-register request."""
    return build_frame(MODE_WRITE, register, data)


def build_write_name(name: str) -> bytes:
    """Build the write for the device name register (length-prefixed ASCII)."""
    encoded = name.encode("ascii")
    return build_write(REG_DEVICE_NAME, bytes([len(encoded)]) + encoded)


READ_BASIC_INFO = build_read(CMD_BASIC_INFO)          # DD A5 03 00 FF FD 77
READ_CELL_VOLTAGES = build_read(CMD_CELL_VOLTAGES)    # DD A5 04 00 FF FC 77
READ_VERSION = build_read(CMD_VERSION)                # DD A5 05 00 FF FB 77
ENTER_FACTORY_MODE = build_write(REG_ENTER_FACTORY, FACTORY_UNLOCK)
EXIT_FACTORY_MODE = build_write(REG_EXIT_FACTORY, EXIT_DISCARD)
EXIT_FACTORY_MODE_SAVE = build_write(REG_EXIT_FACTORY, EXIT_SAVE)


def to_hex(data: bytes) -> str:
    """Space separated hex for log lines."""
    return " ".join(f"{b:02x}" for b in data)


def matches_name(name: str, patterns: List[str] = BMS_NAME_PATTERNS) -> bool:
    """Check an advertised name against the known BMS name fragments."""
    if not name:
        return False
    lowered = name.lower()
    return any(pattern in lowered for pattern in patterns)
