"""
Error taxonomy for the relay protocol.

Every fallible operation in relaychat raises one of these instead of a bare
ValueError or OSError, so callers can decide per class whether the failure
is fatal to a connection or just costs one message:

    HandshakeError      key exchange failed          -> drop the connection
    InvalidKeyError     key is not 32 bytes           -> programmer error
    DecryptError        bad or mismatched ciphertext  -> skip the message
    ConnectionClosed    peer went away                -> deregister
    TransportError      other transport failure       -> deregister
    EncodingError       payload is not UTF-8 text     -> skip the message
"""


class RelayChatError(Exception):
    """Base class for all relaychat errors."""


class HandshakeError(RelayChatError):
    """Key exchange could not be completed over the stream."""


class InvalidKeyError(RelayChatError, ValueError):
    """Symmetric key has the wrong length."""


class DecryptError(RelayChatError, ValueError):
    """Ciphertext blob is truncated, misaligned, or fails padding checks."""


class ConnectionClosed(RelayChatError, ConnectionError):
    """Peer closed the stream before a complete unit was received."""


class TransportError(RelayChatError, OSError):
    """Transport-level failure other than a clean close."""


class FrameTooLargeError(TransportError):
    """Frame length exceeds the configured maximum."""


class EncodingError(RelayChatError, ValueError):
    """Received bytes are not valid UTF-8 text."""
