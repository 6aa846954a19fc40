"""
Codec - Frame validation and decoding of BMS responses.

Stateless functions only. Decoders raise DecodeError subclasses; the
engine turns those into empty reads, so nothing here ever reaches a
consumer as an exception.
"""

import logging
import math
from datetime import date
from typing import List, Optional

from .errors import (
    ChecksumMismatch,
    CommandRejected,
    EmptyPayload,
    MalformedFrame,
    UnexpectedCommand,
)
from .protocol import (
    CMD_BASIC_INFO,
    CMD_CELL_VOLTAGES,
    CMD_VERSION,
    END_MARKER,
    FRAME_OVERHEAD,
    MIN_FRAME_LENGTH,
    START_MARKER,
    STATUS_OK,
    checksum_of,
)
from .types import BasicTelemetry, CellTelemetry, ProtectionFlags


logger = logging.getLogger(__name__)

BASIC_FIXED_LENGTH = 23       # Payload bytes before the temperature words
KELVIN_OFFSET_DECI = 2731     # 273.1 K in 0.1 K units


def checksum(frame: bytes) -> int:
    """
    Compute the checksum a frame should carry.

    Sums the bytes from offset 2 up to the checksum field, so the start
    marker and command byte are excluded, as are the two checksum bytes
    and the end marker.
    """
    return checksum_of(frame[2:len(frame) - 3])


def embedded_checksum(frame: bytes) -> int:
    """Checksum as transmitted in the frame"""
    return (frame[-3] << 8) | frame[-2]


def validate(frame: bytes) -> bool:
    """Check markers and checksum of a complete frame"""
    if len(frame) < MIN_FRAME_LENGTH:
        return False
    if frame[0] != START_MARKER or frame[-1] != END_MARKER:
        return False
    return checksum(frame) == embedded_checksum(frame)


def _payload(frame: bytes, command: int) -> bytes:
    """
    Check a response frame and return its payload.

    Args:
        frame: Complete response frame
        command: Register the response must answer

    Returns:
        Payload bytes as declared by the length field

    Raises:
        MalformedFrame: Bad markers or declared length beyond the frame
        ChecksumMismatch: Embedded checksum is wrong
        UnexpectedCommand: Response to a different register
        CommandRejected: Device reported a non-zero status
    """
    if len(frame) < MIN_FRAME_LENGTH:
        raise MalformedFrame(f"frame too short: {len(frame)} bytes")
    if frame[0] != START_MARKER or frame[-1] != END_MARKER:
        raise MalformedFrame(f"bad markers 0x{frame[0]:02X}...0x{frame[-1]:02X}")

    length = frame[3]
    if len(frame) < length + FRAME_OVERHEAD:
        raise MalformedFrame(f"declared length {length} exceeds frame of {len(frame)} bytes")

    expected = checksum(frame)
    received = embedded_checksum(frame)
    if expected != received:
        raise ChecksumMismatch(expected, received)

    if frame[1] != command:
        raise UnexpectedCommand(command, frame[1])
    if frame[2] != STATUS_OK:
        raise CommandRejected(command, frame[2])

    return bytes(frame[4:4 + length])


def _word(data: bytes, offset: int) -> int:
    return (data[offset] << 8) | data[offset + 1]


def _signed(word: int) -> int:
    return word - 0x10000 if word > 0x7FFF else word


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def decode_date(word: int) -> Optional[date]:
    """
    Unpack the production date word.

    Bits 15-9 are years since 2000, bits 8-5 the month, bits 4-0 the day.
    A zero word or an impossible calendar date gives None.
    """
    if word == 0:
        return None
    try:
        return date(2000 + ((word >> 9) & 0x7F), (word >> 5) & 0x0F, word & 0x1F)
    except ValueError:
        logger.debug(f"Ignoring invalid production date word 0x{word:04X}")
        return None


def decode_temperature(raw: int) -> float:
    """Convert a 0.1 K reading to deg C, rounded to 0.1"""
    return round((raw - KELVIN_OFFSET_DECI) / 10, 1)


def decode_basic_info(frame: bytes) -> BasicTelemetry:
    """
    Decode a basic-info (0x03) response.

    Args:
        frame: Complete frame as delivered by the reassembler

    Returns:
        BasicTelemetry snapshot

    Raises:
        DecodeError: Frame is not a valid basic-info response
    """
    data = _payload(frame, CMD_BASIC_INFO)
    if len(data) < BASIC_FIXED_LENGTH:
        raise MalformedFrame(f"basic info payload too short: {len(data)} bytes")

    voltage = _word(data, 0) / 100
    current = _signed(_word(data, 2)) / 100
    remaining = _word(data, 4) / 100
    nominal = _word(data, 6) / 100
    cycle_count = _word(data, 8)
    production_date = decode_date(_word(data, 10))
    balance_low = _word(data, 12)
    balance_high = _word(data, 14)
    protection = _word(data, 16)
    software_version = data[18]
    rsoc = data[19]
    mos = data[20]
    cell_count = data[21]
    ntc_count = data[22]

    if len(data) < BASIC_FIXED_LENGTH + 2 * ntc_count:
        raise MalformedFrame(f"payload too short for {ntc_count} temperature sensors")

    temperatures = tuple(
        decode_temperature(_word(data, BASIC_FIXED_LENGTH + 2 * i))
        for i in range(ntc_count)
    )

    if nominal > 0:
        soc = min(100, max(0, _round_half_up(remaining / nominal * 100)))
    else:
        soc = rsoc

    return BasicTelemetry(
        voltage=voltage,
        current=current,
        remaining_capacity=remaining,
        nominal_capacity=nominal,
        soc=soc,
        cycle_count=cycle_count,
        production_date=production_date,
        balance_status=balance_low,
        balance_status_high=balance_high,
        protection_status=protection,
        software_version=software_version,
        rsoc=rsoc,
        charge_mos_enabled=bool(mos & 0x01),
        discharge_mos_enabled=bool(mos & 0x02),
        cell_count=cell_count,
        ntc_count=ntc_count,
        temperatures=temperatures,
    )


def decode_cell_voltages(frame: bytes) -> CellTelemetry:
    """
    Decode a cell-voltage (0x04) response.

    Each cell is a big-endian millivolt word; the cell count follows
    from the declared length.

    Raises:
        EmptyPayload: Response declares no cells
        DecodeError: Frame is not a valid cell-voltage response
    """
    data = _payload(frame, CMD_CELL_VOLTAGES)
    count = len(data) // 2
    if count == 0:
        raise EmptyPayload("no cell data in response")

    voltages = tuple(round(_word(data, 2 * i) / 1000, 3) for i in range(count))
    return CellTelemetry(voltages=voltages)


def decode_protection_flags(bitmask: int) -> ProtectionFlags:
    """Expand the 16-bit protection word into named flags"""
    return ProtectionFlags(bitmask & 0xFFFF)


def decode_version(frame: bytes) -> str:
    """Decode the hardware version (0x05) response as text"""
    data = _payload(frame, CMD_VERSION)
    if not data:
        raise EmptyPayload("empty version response")
    return data.decode("ascii", errors="replace").strip("\x00 ")


def decode_write_ack(frame: bytes, register: int) -> None:
    """
    Check the acknowledgement of a write-register command.

    Raises:
        CommandRejected: Device refused the write
        DecodeError: Frame does not acknowledge this register
    """
    _payload(frame, register)


def split_frames(data: bytes) -> List[bytes]:
    """
    Split a capture of back-to-back frames using their length fields.

    Handy for log analysis; trailing bytes that do not form a whole
    frame are dropped.
    """
    frames = []
    i = 0
    while i + 4 <= len(data):
        if data[i] != START_MARKER:
            i += 1
            continue
        end = i + data[i + 3] + FRAME_OVERHEAD
        if end > len(data):
            break
        frames.append(bytes(data[i:end]))
        i = end
    return frames
