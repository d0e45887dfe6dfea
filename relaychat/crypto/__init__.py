"""
Cryptographic primitives for relaychat: X25519 handshake and AES-256-CBC codec.
"""
