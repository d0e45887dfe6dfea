"""
Protocol constants and chat-line helpers for relaychat.

Wire protocol per TCP connection, in order:
    1. Handshake: 32-byte X25519 public key each way (see crypto.handshake)
    2. Server sends PROMPT; client answers with its display name and "\\n"
    3. Frames in both directions (see common.framing), each carrying a
       cipher blob (see crypto.cipher)

Decrypted frame payloads are UTF-8 text. A chat message reads
"[HH:MM:SS] displayname: message text"; an empty payload is the
acknowledgement the server sends back to the author of a message.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from relaychat.common.errors import EncodingError


PROMPT = "Enter your username:\n"

TIME_FORMAT = "%H:%M:%S"

DELIVERED_MARK = "✔ Delivered"

_CHAT_LINE_RE = re.compile(r"^\[(\d{2}:\d{2}:\d{2})\] (.+?): ?(.*)$", re.DOTALL)


class PayloadKind(Enum):
    """What a decrypted payload means to the receiving peer."""

    ACK = "ACK"
    CHAT = "CHAT"

    def __str__(self) -> str:
        return self.value


@dataclass
class ChatLine:
    """
    One relayed chat message.

    Fields:
        timestamp: Wall-clock time the server stamped, "HH:MM:SS"
        sender: Display name of the author
        text: Message body (already trimmed)
    """

    timestamp: str
    sender: str
    text: str

    def __str__(self) -> str:
        return f"[{self.timestamp}] {self.sender}: {self.text}"


def format_chat_line(sender: str, text: str, when: Optional[datetime] = None) -> str:
    """Stamp a message as "[HH:MM:SS] sender: text" using local time."""
    when = when or datetime.now()
    return str(ChatLine(timestamp=when.strftime(TIME_FORMAT), sender=sender, text=text))


def parse_chat_line(line: str) -> Optional[ChatLine]:
    """
    Split a formatted chat line into its parts.

    Returns None when the line does not look like a chat message.

    Example:
        >>> parse_chat_line("[12:00:01] alice: hi")
        ChatLine(timestamp='12:00:01', sender='alice', text='hi')
    """
    match = _CHAT_LINE_RE.match(line.strip())
    if not match:
        return None
    timestamp, sender, text = match.groups()
    return ChatLine(timestamp=timestamp, sender=sender, text=text)


def is_own_message(line: str, username: str) -> bool:
    """True if a relayed line was authored under this username."""
    parsed = parse_chat_line(line)
    return parsed is not None and parsed.sender == username


def classify_payload(text: str) -> PayloadKind:
    return PayloadKind.ACK if text == "" else PayloadKind.CHAT


def decode_text(data: bytes, what: str = "message") -> str:
    """
    Decode UTF-8 bytes received from a peer.

    Raises: EncodingError if data is not valid UTF-8
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise EncodingError(f"Invalid UTF-8 in {what}: {e}") from e


def encode_text(text: str) -> bytes:
    return text.encode("utf-8")
