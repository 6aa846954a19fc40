"""
Error types raised inside the protocol engine.

The engine facade catches these at its boundary: reads turn into None,
connect/write calls turn into False, and connection-level failures move
the ConnectionState.
"""


class BMSError(Exception):
    """Base class for every protocol engine error"""


class TransportUnavailable(BMSError):
    """Bluetooth radio is off, missing, or permission was denied"""


class ConnectFailure(BMSError):
    """Link to the device could not be established"""


class ConnectTimeout(ConnectFailure):
    """Link establishment did not finish in time"""


class NotConnected(BMSError):
    """Operation needs an open link and there is none"""


class WriteFailure(BMSError):
    """Transport rejected a write in both acknowledgement modes"""


class CommandTimeout(BMSError):
    """No complete response frame arrived before the deadline"""


class RequestInFlight(BMSError):
    """Another command is still waiting for its response"""


class DecodeError(BMSError):
    """Response frame could not be turned into telemetry"""


class MalformedFrame(DecodeError):
    """Markers, length, or layout of the frame are wrong"""


class ChecksumMismatch(DecodeError):
    """Embedded checksum does not match the frame contents"""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"checksum mismatch: expected 0x{expected:04X}, got 0x{received:04X}")
        self.expected = expected
        self.received = received


class EmptyPayload(DecodeError):
    """Frame is well formed but carries no data"""


class UnexpectedCommand(MalformedFrame):
    """Frame answers a different command than the one requested"""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"expected response to 0x{expected:02X}, got 0x{received:02X}")
        self.expected = expected
        self.received = received


class CommandRejected(DecodeError):
    """Device answered with a non-zero status byte"""

    def __init__(self, command: int, status: int) -> None:
        super().__init__(f"command 0x{command:02X} rejected with status 0x{status:02X}")
        self.command = command
        self.status = status


__all__ = [
    "BMSError",
    "TransportUnavailable",
    "ConnectFailure",
    "ConnectTimeout",
    "NotConnected",
    "WriteFailure",
    "CommandTimeout",
    "RequestInFlight",
    "DecodeError",
    "MalformedFrame",
    "ChecksumMismatch",
    "EmptyPayload",
    "UnexpectedCommand",
    "CommandRejected",
]
