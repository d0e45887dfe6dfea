"""
Ephemeral X25519 key exchange over an asyncio stream.

Protocol: each side generates a fresh keypair (a, A) and writes its raw
32-byte public key A, then reads the peer's 32-byte public key B.
Shared secret: Ks = X25519(a, B) = X25519(b, A)
Session key: SHA256(Ks) (AES-256)

Both sides write before they read, so neither blocks waiting on the other.
There is no type tag or version byte on the wire.
"""

import asyncio
import logging
from typing import Optional, Tuple
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from relaychat.common.errors import HandshakeError


logger = logging.getLogger(__name__)

PUBLIC_KEY_SIZE = 32
SHARED_KEY_SIZE = 32


def generate_keypair() -> Tuple[x25519.X25519PrivateKey, bytes]:
    """
    Generate an ephemeral X25519 keypair.

    Returns: (private key, raw 32-byte public key)
    """
    private_key = x25519.X25519PrivateKey.generate()
    public_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return private_key, public_bytes


def derive_shared_key(private_key: x25519.X25519PrivateKey, peer_public_bytes: bytes) -> bytes:
    """
    Compute the shared secret and derive the 32-byte session key.

    Computes: Ks = X25519(private_key, peer_public)
    Derives: SHA256(Ks)

    Raises: HandshakeError if the peer key is malformed or of low order
    """
    if len(peer_public_bytes) != PUBLIC_KEY_SIZE:
        raise HandshakeError(
            f"Peer public key must be {PUBLIC_KEY_SIZE} bytes, got {len(peer_public_bytes)}"
        )

    try:
        peer_public = x25519.X25519PublicKey.from_public_bytes(peer_public_bytes)
        shared_secret = private_key.exchange(peer_public)
    except ValueError as e:
        raise HandshakeError(f"Invalid peer public key: {e}") from e

    digest = hashes.Hash(hashes.SHA256())
    digest.update(shared_secret)
    return digest.finalize()


async def _exchange(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> bytes:
    private_key, public_bytes = generate_keypair()

    # Write first: both ends follow the same order
    writer.write(public_bytes)
    await writer.drain()

    peer_public_bytes = await reader.readexactly(PUBLIC_KEY_SIZE)

    key = derive_shared_key(private_key, peer_public_bytes)
    del private_key
    return key


async def perform_handshake(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    timeout: Optional[float] = None,
) -> bytes:
    """
    Run the key exchange on a freshly connected stream.

    Args:
        reader, writer: The two halves of the connection
        timeout: Seconds allowed for the whole exchange (None = wait forever)

    Returns: 32-byte shared key

    Raises:
        HandshakeError: If the stream closes, resets or times out, or the
            peer's public key is invalid. Not retried; drop the connection.
    """
    try:
        if timeout is None:
            return await _exchange(reader, writer)
        return await asyncio.wait_for(_exchange(reader, writer), timeout)
    except asyncio.IncompleteReadError as e:
        raise HandshakeError(
            f"Connection closed during key exchange ({len(e.partial)}/{PUBLIC_KEY_SIZE} bytes received)"
        ) from e
    except asyncio.TimeoutError as e:
        raise HandshakeError(f"Key exchange timed out after {timeout}s") from e
    except OSError as e:
        raise HandshakeError(f"Transport error during key exchange: {e}") from e
