"""
relaychat TCP client.

This module implements the chat peer:
    1. Connects to the relay server
    2. Runs the X25519 handshake to agree an AES-256 key
    3. Shows the server's username prompt and sends the chosen name
    4. Runs two tasks for the life of the connection:
         - receive: frame -> decrypt -> display
         - send: console line -> encrypt -> frame

The tasks share the key (read-only) and use opposite halves of the
connection, so no locking is needed between them. When either task ends
the other is cancelled and the connection is closed.

Relayed copies of this user's own messages are not displayed again; the
server's empty acknowledgement frame is shown as a delivery mark.

Usage:
    python -m relaychat client [--host HOST] [--port PORT]
"""

import asyncio
import argparse
import sys
import logging
import threading
from typing import AsyncIterator, Callable, Optional

from relaychat.common import config
from relaychat.common.errors import (
    ConnectionClosed,
    DecryptError,
    EncodingError,
    HandshakeError,
    RelayChatError,
    TransportError,
)
from relaychat.common.framing import read_frame, write_frame
from relaychat.common.protocol import (
    DELIVERED_MARK,
    PayloadKind,
    classify_payload,
    decode_text,
    encode_text,
    format_chat_line,
    is_own_message,
)
from relaychat.crypto.cipher import decrypt, encrypt
from relaychat.crypto.handshake import perform_handshake


logger = logging.getLogger(__name__)

Display = Callable[[str], None]


async def console_lines() -> AsyncIterator[str]:
    """
    Yield lines typed on stdin without blocking the event loop.

    A daemon thread does the blocking reads, so a pending read never keeps
    the process alive after the connection is gone.
    """
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def pump() -> None:
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\r\n"))
            loop.call_soon_threadsafe(queue.put_nowait, None)
        except RuntimeError:
            # Event loop already closed
            return

    threading.Thread(target=pump, name="console-reader", daemon=True).start()

    while True:
        line = await queue.get()
        if line is None:
            return
        yield line


async def receive_loop(reader: asyncio.StreamReader, key: bytes, username: str, display: Display) -> None:
    """
    Display every relayed message until the server closes the connection.

    Raises:
        ConnectionClosed: When the server ends the stream
        TransportError: On any other read failure
    """
    while True:
        blob = await read_frame(reader)

        try:
            text = decode_text(decrypt(key, blob), "broadcast message")
        except DecryptError:
            logger.warning("Failed to decrypt broadcast message.")
            continue
        except EncodingError:
            logger.warning("Failed to decode broadcast message.")
            continue

        if classify_payload(text) is PayloadKind.ACK:
            display(DELIVERED_MARK)
            continue

        if is_own_message(text, username):
            continue

        display(text.strip())


async def send_loop(
    writer: asyncio.StreamWriter,
    key: bytes,
    username: str,
    lines: AsyncIterator[str],
    display: Display,
) -> None:
    """
    Encrypt and send each non-blank input line until input runs out.

    Raises: TransportError if the connection fails
    """
    async for line in lines:
        message = line.strip()
        if not message:
            continue

        await write_frame(writer, encrypt(key, encode_text(message)))
        display(format_chat_line(username, message))


async def _next_line(lines: AsyncIterator[str]) -> Optional[str]:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


async def chat_session(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    lines: AsyncIterator[str],
    display: Display = print,
    handshake_timeout: Optional[float] = None,
) -> None:
    """
    Run the client side of the protocol on an open connection.

    The first line taken from `lines` is the display name; the rest are
    chat messages.

    Raises:
        HandshakeError: If the key exchange fails
        ConnectionClosed: If the server goes away
        TransportError: On other transport failures
    """
    key = await perform_handshake(reader, writer, timeout=handshake_timeout)
    logger.debug("Key exchange complete")

    try:
        prompt = await reader.readline()
    except (OSError, ValueError) as e:
        raise TransportError(f"Error reading username prompt: {e}") from e
    if not prompt:
        raise ConnectionClosed("Server closed the connection before asking for a username")
    display(decode_text(prompt, "prompt").rstrip("\n"))

    name = await _next_line(lines)
    if name is None:
        raise RelayChatError("Failed to read username")
    username = name.strip()

    try:
        writer.write(encode_text(f"{username}\n"))
        await writer.drain()
    except OSError as e:
        raise TransportError(f"Error sending username: {e}") from e

    receive_task = asyncio.create_task(receive_loop(reader, key, username, display), name="receive")
    send_task = asyncio.create_task(send_loop(writer, key, username, lines, display), name="send")

    done, pending = await asyncio.wait({receive_task, send_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        task.result()


async def chat_client(
    host: str,
    port: int,
    lines: Optional[AsyncIterator[str]] = None,
    display: Display = print,
    handshake_timeout: Optional[float] = None,
) -> None:
    """
    Connect to a relay server and chat until input ends or the server leaves.

    Args:
        host, port: Server address
        lines: Source of input lines (default: the console)
        display: Sink for text shown to the user (default: print)
        handshake_timeout: Seconds allowed for the key exchange

    Raises:
        TransportError: If the server cannot be reached
        HandshakeError, ConnectionClosed: As for chat_session()
    """
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError as e:
        raise TransportError(f"Could not connect to {host}:{port}: {e}") from e
    logger.info(f"Connected to {host}:{port}")

    try:
        await chat_session(
            reader,
            writer,
            lines if lines is not None else console_lines(),
            display,
            handshake_timeout,
        )
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error closing socket: {e}")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="relaychat encrypted chat client")
    parser.add_argument("--host", default=config.SERVER_HOST, help="server address")
    parser.add_argument("--port", type=int, default=config.SERVER_PORT, help="server port")
    return parser


def main(argv=None) -> None:
    """
    Main entry point for the client.

    Exit codes:
        0: Input ended or user pressed Ctrl+C
        1: Could not connect, handshake failed, or the server disconnected
    """
    args = build_arg_parser().parse_args(argv)
    config.setup_logging()

    try:
        asyncio.run(chat_client(args.host, args.port, handshake_timeout=config.handshake_timeout()))
    except KeyboardInterrupt:
        print("\n[*] Disconnected")
    except HandshakeError as e:
        logger.critical(f"Key exchange failed: {e}")
        print(f"[!] Key exchange with server failed: {e}")
        sys.exit(1)
    except ConnectionClosed as e:
        logger.critical(f"Connection closed: {e}")
        print(f"[!] Connection closed by server: {e}")
        sys.exit(1)
    except RelayChatError as e:
        logger.critical(f"Fatal error: {e}")
        print(f"[!] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
