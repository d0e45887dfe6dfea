"""
AES-256-CBC encryption with PKCS#7 padding.

Algorithm: AES-256, Mode: CBC, Padding: PKCS#7, IV: Random 16 bytes
Ciphertext format: [16-byte IV] + [encrypted data]

Every call to encrypt() draws a fresh IV, so encrypting the same plaintext
twice under the same key yields different blobs. The padded ciphertext is
always a whole number of blocks, at least one: len = 16 * (len(pt) // 16 + 1).

Usage:
    key = perform_handshake(...)  # 32 bytes
    blob = encrypt(key, b"Hello")
    pt = decrypt(key, blob)
"""

import secrets
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import padding as crypto_padding

from relaychat.common.errors import DecryptError, InvalidKeyError


# AES-256 key size (32 bytes = 256 bits)
AES_KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE_BYTES = 16
AES_BLOCK_SIZE = 128  # bits


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != AES_KEY_SIZE:
        size = len(key) if isinstance(key, (bytes, bytearray)) else type(key).__name__
        raise InvalidKeyError(f"AES key must be {AES_KEY_SIZE} bytes, got {size}")


def _apply_pkcs7_padding(data: bytes) -> bytes:
    padder = crypto_padding.PKCS7(AES_BLOCK_SIZE).padder()
    return padder.update(data) + padder.finalize()


def _remove_pkcs7_padding(data: bytes) -> bytes:
    """
    Remove PKCS#7 padding from data.

    The unpadder in cryptography checks the padding bytes in constant time.

    Raises: DecryptError if padding invalid
    """
    unpadder = crypto_padding.PKCS7(AES_BLOCK_SIZE).unpadder()
    try:
        return unpadder.update(data) + unpadder.finalize()
    except ValueError as e:
        raise DecryptError("Invalid PKCS#7 padding") from e


def ciphertext_length(plaintext_length: int) -> int:
    """Size of the blob encrypt() produces for a plaintext of this length."""
    return IV_SIZE + (plaintext_length // BLOCK_SIZE_BYTES + 1) * BLOCK_SIZE_BYTES


def encrypt(key: bytes, plaintext: bytes) -> bytes:
    """
    Encrypt bytes using AES-256-CBC with PKCS#7 padding.

    Args: key (32 bytes), plaintext (may be empty)
    Returns: [16-byte IV] + [encrypted data]
    Raises: InvalidKeyError if key not 32 bytes
    """
    _check_key(key)

    padded_plaintext = _apply_pkcs7_padding(plaintext)

    iv = secrets.token_bytes(IV_SIZE)

    encryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded_plaintext) + encryptor.finalize()

    return iv + ciphertext


def decrypt(key: bytes, blob: bytes) -> bytes:
    """
    Decrypt a blob produced by encrypt().

    Args: key (32 bytes), blob ([IV] + [data])
    Returns: Plaintext bytes
    Raises:
        InvalidKeyError: If key not 32 bytes
        DecryptError: If blob is too short, not block-aligned, or badly padded
    """
    _check_key(key)

    if len(blob) < IV_SIZE:
        raise DecryptError(f"Ciphertext too short (minimum {IV_SIZE} bytes for IV), got {len(blob)}")

    iv = blob[:IV_SIZE]
    encrypted_data = blob[IV_SIZE:]

    if len(encrypted_data) % BLOCK_SIZE_BYTES != 0:
        raise DecryptError(
            f"Ciphertext length {len(encrypted_data)} is not a multiple of {BLOCK_SIZE_BYTES}"
        )

    try:
        decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(iv)).decryptor()
        padded_plaintext = decryptor.update(encrypted_data) + decryptor.finalize()
    except ValueError as e:
        raise DecryptError(f"Decryption failed: {e}") from e

    return _remove_pkcs7_padding(padded_plaintext)
