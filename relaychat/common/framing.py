"""
Length-prefixed binary framing over asyncio streams.

Frame layout:
    [4 bytes: payload length, big-endian unsigned]
    [N bytes: payload]

Example:
    Payload: 32 bytes of ciphertext
    Wire format: 0x00 0x00 0x00 0x20 <32 bytes>

The payload is opaque here; in the relay protocol it is always a cipher
blob. A reader never hands out payload bytes before the full declared
length has arrived.
"""

import asyncio
import struct
import logging

from relaychat.common.config import MAX_FRAME_SIZE
from relaychat.common.errors import ConnectionClosed, FrameTooLargeError, TransportError


logger = logging.getLogger(__name__)

# Message framing constants
LENGTH_PREFIX_SIZE = 4
LENGTH_STRUCT = struct.Struct(">I")


async def _read_exactly(reader: asyncio.StreamReader, n: int, what: str) -> bytes:
    try:
        return await reader.readexactly(n)
    except asyncio.IncompleteReadError as e:
        raise ConnectionClosed(
            f"Connection closed while reading {what} ({len(e.partial)}/{n} bytes)"
        ) from e
    except OSError as e:
        raise TransportError(f"Error reading {what}: {e}") from e


async def read_frame(reader: asyncio.StreamReader, max_size: int = MAX_FRAME_SIZE) -> bytes:
    """
    Read one frame and return its payload.

    Args:
        reader: Stream to read from
        max_size: Largest payload accepted (checked before allocating)

    Returns:
        Payload bytes (may be empty)

    Raises:
        ConnectionClosed: If the stream ends before the frame is complete
        FrameTooLargeError: If the declared length exceeds max_size
        TransportError: On any other read failure
    """
    header = await _read_exactly(reader, LENGTH_PREFIX_SIZE, "frame header")
    (length,) = LENGTH_STRUCT.unpack(header)

    if length > max_size:
        raise FrameTooLargeError(f"Frame too large: {length} > {max_size}")

    if length == 0:
        return b""

    return await _read_exactly(reader, length, "frame payload")


async def write_frame(writer: asyncio.StreamWriter, payload: bytes, max_size: int = MAX_FRAME_SIZE) -> None:
    """
    Write one frame and wait until the transport has accepted it.

    A failure part-way leaves the stream in an unknown state; the caller
    must close the connection rather than retry on it.

    Raises:
        FrameTooLargeError: If payload exceeds max_size
        TransportError: If writing or draining fails
    """
    if len(payload) > max_size:
        raise FrameTooLargeError(f"Frame exceeds maximum size: {len(payload)} > {max_size}")

    try:
        writer.write(LENGTH_STRUCT.pack(len(payload)))
        writer.write(payload)
        await writer.drain()
    except OSError as e:
        raise TransportError(f"Error writing frame: {e}") from e

    logger.debug(f"Frame sent ({len(payload)} bytes)")
