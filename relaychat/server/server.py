"""
relaychat TCP relay server.

This module implements an asyncio server that:
    1. Accepts client connections on a configurable host/port
    2. Runs an X25519 handshake to agree a per-connection AES-256 key
    3. Prompts for a display name and registers the session
    4. Decrypts each incoming frame with the sender's key and relays it,
       re-encrypted, to every registered session
    5. Deregisters the session when its connection ends

Per-connection states:
    Handshaking -> AwaitingName -> Registered -> Relaying -> Terminated

A failure on one connection only ends that connection. Bad ciphertext or
non-UTF-8 text costs one message, not the connection.

Usage:
    python -m relaychat server [--host HOST] [--port PORT]

    To stop the server: Press Ctrl+C
"""

import asyncio
import argparse
import sys
import logging
from typing import Optional

from relaychat.common import config
from relaychat.common.errors import (
    ConnectionClosed,
    DecryptError,
    EncodingError,
    HandshakeError,
    TransportError,
)
from relaychat.common.framing import read_frame
from relaychat.common.protocol import PROMPT, decode_text, encode_text, format_chat_line
from relaychat.crypto.cipher import decrypt
from relaychat.crypto.handshake import perform_handshake
from relaychat.server.registry import Session, SessionRegistry


logger = logging.getLogger(__name__)


def _peer_id(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


async def _close_writer(writer: asyncio.StreamWriter, client_id: str) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"[{client_id}] Error closing socket: {e}")


async def read_display_name(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> str:
    """
    Send the username prompt and read one line back.

    Returns: Display name with surrounding whitespace removed (may be empty)

    Raises:
        ConnectionClosed: If the client disconnects before answering
        EncodingError: If the name is not UTF-8
        TransportError: On socket errors or an over-long line
    """
    try:
        writer.write(PROMPT.encode("ascii"))
        await writer.drain()
        line = await reader.readline()
    except ValueError as e:
        # StreamReader raises ValueError when the line exceeds its buffer limit
        raise TransportError(f"Display name line too long: {e}") from e
    except OSError as e:
        raise TransportError(f"Error during username prompt: {e}") from e

    if not line:
        raise ConnectionClosed("Connection closed before a username was sent")

    return decode_text(line, "display name").strip()


async def relay_messages(session: Session, reader: asyncio.StreamReader, registry: SessionRegistry) -> None:
    """
    Read frames from one session until its stream ends, relaying each
    decrypted message to all registered sessions.

    Returns normally on disconnect. Decrypt and encoding failures are
    logged and skipped.
    """
    client_id = session.peer
    username = session.display_name

    while True:
        try:
            blob = await read_frame(reader)
        except ConnectionClosed as e:
            logger.debug(f"[{client_id}] {e}")
            return
        except TransportError as e:
            logger.warning(f"[{client_id}] Transport error from {username}: {e}")
            return

        try:
            plaintext = decrypt(session.key, blob)
        except DecryptError as e:
            logger.warning(f"[{client_id}] Failed to decrypt message from {username}: {e}")
            continue

        try:
            text = decode_text(plaintext).strip()
        except EncodingError:
            logger.warning(f"[{client_id}] Invalid UTF-8 from {username}")
            continue

        full_msg = format_chat_line(username, text)
        logger.info(f"Broadcasting: {full_msg}")

        delivered = await registry.broadcast(username, encode_text(full_msg))
        logger.debug(f"[{client_id}] Message from {username} delivered to {delivered} session(s)")


async def handle_client(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    registry: SessionRegistry,
    handshake_timeout: Optional[float] = None,
) -> None:
    """
    Drive one connection through its whole lifecycle.

    Args:
        reader, writer: Accepted connection
        registry: Shared session registry
        handshake_timeout: Seconds allowed for the key exchange (None = no limit)
    """
    client_id = _peer_id(writer)
    session: Optional[Session] = None
    logger.info(f"Client connected: {client_id}")

    try:
        # Handshaking
        try:
            key = await perform_handshake(reader, writer, timeout=handshake_timeout)
        except HandshakeError as e:
            logger.error(f"[{client_id}] Key exchange failed: {e}")
            return
        logger.debug(f"[{client_id}] Key exchange complete")

        # AwaitingName
        try:
            username = await read_display_name(reader, writer)
        except (ConnectionClosed, TransportError, EncodingError) as e:
            logger.warning(f"[{client_id}] No usable username: {e}")
            return

        if not username:
            logger.warning(f"[{client_id}] Empty username, closing connection")
            return

        # Registered
        session = Session(display_name=username, key=key, writer=writer, peer=client_id)
        await registry.register(session)
        logger.info(f"{username} joined from {client_id}")

        # Relaying
        await relay_messages(session, reader, registry)

    except Exception:
        # Keep the failure inside this connection's task
        logger.exception(f"[{client_id}] Unexpected error")

    finally:
        # Terminated
        if session is not None:
            await registry.deregister(session.display_name)
            logger.info(f"{session.display_name} disconnected.")
        await _close_writer(writer, client_id)
        logger.info(f"[{client_id}] Connection closed")


async def start_server(
    host: str,
    port: int,
    registry: Optional[SessionRegistry] = None,
    handshake_timeout: Optional[float] = None,
) -> asyncio.AbstractServer:
    """
    Bind the listener and start accepting connections.

    Pass port=0 to let the OS pick a free port; read it back from
    server.sockets[0].getsockname().

    Returns: The running asyncio server (not yet serving forever)
    """
    registry = registry if registry is not None else SessionRegistry()

    async def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await handle_client(reader, writer, registry, handshake_timeout)

    server = await asyncio.start_server(on_connect, host, port)
    addrs = ", ".join(str(sock.getsockname()) for sock in server.sockets or [])
    logger.info(f"Encrypted chat server listening on {addrs}")
    return server


async def serve(host: str, port: int) -> None:
    """Run the relay server until cancelled."""
    server = await start_server(host, port, handshake_timeout=config.handshake_timeout())
    print(f"[*] relaychat server started on {host}:{port}")
    print("[*] Press Ctrl+C to stop the server")
    async with server:
        await server.serve_forever()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="relaychat encrypted relay server")
    parser.add_argument("--host", default=config.SERVER_HOST, help="address to bind")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help="port to listen on")
    return parser


def main(argv=None) -> None:
    """
    Main entry point for the server.

    Exit codes:
        0: Normal shutdown
        1: Fatal error (bind failure, etc.)
    """
    args = build_arg_parser().parse_args(argv)
    config.setup_logging()

    try:
        asyncio.run(serve(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        print("\n[*] Server stopped by user")
    except OSError as e:
        logger.critical(f"Socket error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
