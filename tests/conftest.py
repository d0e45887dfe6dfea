"""
Shared test helpers.

Async code is driven with asyncio.run() inside plain test functions, so the
fixtures here hand out helper classes and coroutine functions rather than
running anything themselves.
"""

import asyncio
import socket
import time
from typing import Callable, List, Tuple

import pytest

from relaychat.common.errors import ConnectionClosed
from relaychat.common.framing import read_frame
from relaychat.crypto.cipher import decrypt


class RecordingWriter:
    """Stand-in for asyncio.StreamWriter that keeps everything written."""

    def __init__(self, peer: Tuple[str, int] = ("127.0.0.1", 40000)):
        self.buffer = bytearray()
        self.closed = False
        self._peer = peer

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self.closed

    def get_extra_info(self, name, default=None):
        return self._peer if name == "peername" else default

    async def frames(self) -> List[bytes]:
        """Parse everything written so far back into frame payloads."""
        reader = asyncio.StreamReader()
        reader.feed_data(bytes(self.buffer))
        reader.feed_eof()
        payloads = []
        while True:
            try:
                payloads.append(await read_frame(reader))
            except ConnectionClosed:
                return payloads

    async def plaintexts(self, key: bytes) -> List[bytes]:
        return [decrypt(key, blob) for blob in await self.frames()]


class FailingWriter(RecordingWriter):
    """Writer whose connection has been reset by the peer."""

    async def drain(self) -> None:
        raise ConnectionResetError("Connection reset by peer")


async def open_stream_pair():
    """Two connected (reader, writer) pairs over a real socket pair."""
    left, right = socket.socketpair()
    left_streams = await asyncio.open_connection(sock=left)
    right_streams = await asyncio.open_connection(sock=right)
    return left_streams, right_streams


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll predicate until it holds or fail the test after timeout seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def recording_writer():
    return RecordingWriter


@pytest.fixture
def failing_writer():
    return FailingWriter


@pytest.fixture
def stream_pair():
    return open_stream_pair


@pytest.fixture
def wait_for():
    return wait_until


@pytest.fixture
def key():
    return bytes(range(32))
