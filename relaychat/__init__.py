"""
relaychat: encrypted multi-client chat relay over raw TCP.

Each connection agrees its own AES-256 key with an ephemeral X25519
handshake; the server decrypts every message with the sender's key and
re-encrypts it for each connected session.
"""

__version__ = "0.1.0"
