"""
Reassembler and Correlator - turn notification chunks into responses.

BLE notifications arrive in small chunks (often 20 bytes). FrameAssembler
glues them back into frames using the declared length, and Correlator
hands the next complete frame to the single command waiting for it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .errors import CommandTimeout, NotConnected, RequestInFlight
from .protocol import END_MARKER, FRAME_OVERHEAD, START_MARKER, to_hex


logger = logging.getLogger(__name__)


class FrameAssembler:
    """
    Byte accumulator for one link.

    Frames are cut by their length byte once the header is visible. The
    end marker is only searched for when the length does not line up
    with one, so a 0x77 inside a payload does not split a frame.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Append a chunk and return every frame it completed.

        Args:
            chunk: Raw notification bytes

        Returns:
            Complete frames in arrival order (may be empty)
        """
        buf = self._buffer
        buf.extend(chunk)
        frames = []

        while buf:
            # Resync on the start marker
            if buf[0] != START_MARKER:
                start = buf.find(bytes([START_MARKER]))
                if start < 0:
                    logger.debug(f"Discarding {len(buf)} bytes without start marker")
                    buf.clear()
                    break
                logger.debug(f"Resync: discarding {start} bytes before start marker")
                del buf[:start]

            if len(buf) < 4:
                break

            need = buf[3] + FRAME_OVERHEAD
            if len(buf) < need:
                break

            if buf[need - 1] == END_MARKER:
                frames.append(bytes(buf[:need]))
                del buf[:need]
                continue

            # Length and end marker disagree: fall back to the first marker
            end = buf.find(bytes([END_MARKER]), 4)
            logger.debug(f"Length field does not line up with end marker, fallback end={end}")
            if end < 0:
                # Nothing usable in this header, drop it and look for the next one
                del buf[:1]
                continue
            frames.append(bytes(buf[:end + 1]))
            del buf[:end + 1]

        return frames

    def reset(self) -> None:
        self._buffer.clear()

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)


class Correlator:
    """
    Matches one outstanding command to the next complete frame.

    Callers must serialize: a second submit() while one is pending is
    rejected rather than queued.
    """

    def __init__(
        self,
        write: Callable[[bytes], Awaitable[None]],
        timeout: float = 5.0,
    ) -> None:
        """
        Args:
            write: Coroutine that puts command bytes on the link
            timeout: Default response deadline in seconds
        """
        self._write = write
        self.timeout = timeout
        self._assembler = FrameAssembler()
        self._pending: Optional[asyncio.Future] = None
        self.dropped_frames = 0

    @property
    def busy(self) -> bool:
        """Check if a command is waiting for its response"""
        return self._pending is not None

    async def submit(self, command: bytes, timeout: Optional[float] = None) -> bytes:
        """
        Send a command and wait for its response frame.

        Args:
            command: Complete command frame
            timeout: Override of the default deadline

        Returns:
            The next complete frame received after sending

        Raises:
            RequestInFlight: Another command is pending
            CommandTimeout: No frame before the deadline
            NotConnected: Link closed while waiting
            WriteFailure: Command could not be written
        """
        if self._pending is not None:
            raise RequestInFlight("a command is already waiting for a response")

        deadline = self.timeout if timeout is None else timeout
        future = asyncio.get_running_loop().create_future()
        self._pending = future
        try:
            logger.debug(f"TX: {to_hex(command)}")
            await self._write(command)
            return await asyncio.wait_for(future, deadline)
        except asyncio.TimeoutError:
            # A truncated response must not swallow the next one
            self._assembler.reset()
            raise CommandTimeout(f"no response to {to_hex(command)} within {deadline}s") from None
        finally:
            if self._pending is future:
                self._pending = None

    def on_chunk(self, chunk: bytes) -> None:
        """Receive path: called by the transport for every notification"""
        for frame in self._assembler.feed(chunk):
            logger.debug(f"RX frame: {to_hex(frame)}")
            pending = self._pending
            if pending is not None and not pending.done():
                pending.set_result(frame)
            else:
                self.dropped_frames += 1
                logger.debug("Dropping frame with no waiting command")

    def cancel(self) -> None:
        """Fail the pending command and forget partial input"""
        pending = self._pending
        if pending is not None and not pending.done():
            pending.set_exception(NotConnected("link closed while waiting for response"))
        self._pending = None
        self._assembler.reset()

    def reset(self) -> None:
        """Clear partial input, e.g. for a fresh link"""
        self._assembler.reset()
