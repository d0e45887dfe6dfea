"""
Live session bookkeeping for the relay server.

A Session is one connected, named participant: its display name, the key
negotiated with it, and the write half of its connection. The
SessionRegistry holds every live Session behind a single asyncio.Lock.

Locking rules:
    - The registry lock is held only to copy or mutate the session list,
      never across a socket write.
    - Each Session has its own write lock, so the author's ack and the
      broadcasts of other senders never interleave bytes on one stream.

Display names are not required to be unique. deregister() removes every
session carrying the name.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from relaychat.common.errors import TransportError
from relaychat.common.framing import write_frame
from relaychat.crypto.cipher import encrypt


logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    """
    Server-side record of one registered connection.

    Fields:
        display_name: Name the client chose at login
        key: 32-byte shared key from the handshake (never logged)
        writer: Write half of the connection
        peer: "host:port" of the client, for log lines
    """

    display_name: str
    key: bytes = field(repr=False)
    writer: asyncio.StreamWriter = field(repr=False)
    peer: str = ""
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def send(self, *plaintexts: bytes) -> None:
        """
        Encrypt each plaintext under this session's key and write one frame
        per plaintext, back to back under the session's write lock.

        Raises: TransportError if the connection fails
        """
        blobs = [encrypt(self.key, pt) for pt in plaintexts]
        async with self.write_lock:
            for blob in blobs:
                await write_frame(self.writer, blob)

    async def close(self) -> None:
        """Close the write half; errors on an already-dead socket are ignored."""
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"[{self.peer}] Error while closing writer: {e}")


class SessionRegistry:
    """Shared, lock-guarded list of live sessions in registration order."""

    def __init__(self) -> None:
        self._sessions: List[Session] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def register(self, session: Session) -> None:
        """Add a session. Duplicate names are accepted."""
        async with self._lock:
            self._sessions.append(session)
            count = len(self._sessions)
        logger.debug(f"Registered {session.display_name} ({count} online)")

    async def deregister(self, display_name: str) -> int:
        """
        Remove every session with this display name.

        Returns: number of sessions removed (0 if none matched)
        """
        async with self._lock:
            before = len(self._sessions)
            self._sessions = [s for s in self._sessions if s.display_name != display_name]
            removed = before - len(self._sessions)
        if removed:
            logger.debug(f"Deregistered {display_name} ({removed} session(s))")
        return removed

    async def snapshot(self) -> List[Session]:
        """Copy of the current session list, safe to iterate without the lock."""
        async with self._lock:
            return list(self._sessions)

    async def get(self, display_name: str) -> Optional[Session]:
        async with self._lock:
            for session in self._sessions:
                if session.display_name == display_name:
                    return session
        return None

    async def _deliver(self, session: Session, sender_name: str, plaintext: bytes) -> bool:
        try:
            if session.display_name == sender_name:
                # Author gets an empty ack first, then its own copy
                await session.send(b"", plaintext)
            else:
                await session.send(plaintext)
        except TransportError as e:
            logger.warning(f"[{session.peer}] Failed to deliver to {session.display_name}: {e}")
            return False
        logger.debug(f"Broadcasted message to {session.display_name}")
        return True

    async def broadcast(self, sender_name: str, plaintext: bytes) -> int:
        """
        Deliver plaintext to every registered session, each encrypted under
        its own key.

        One recipient failing does not stop delivery to the others.

        Returns: number of sessions that received the message
        """
        sessions = await self.snapshot()
        results = await asyncio.gather(
            *(self._deliver(session, sender_name, plaintext) for session in sessions)
        )
        return sum(1 for ok in results if ok)
