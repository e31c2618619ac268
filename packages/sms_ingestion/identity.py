"""Message identity hashing.

Two raw messages with the same identity are treated as the same logical
event, whichever channel surfaced them.
"""

import hashlib
import re

from .models import RawMessage


def normalize_body(body: str) -> str:
    """Collapse whitespace and uppercase so channel formatting differences vanish."""
    if not body:
        return ""
    return re.sub(r"\s+", " ", body).strip().upper()


def message_identity(user_id: str, message: RawMessage) -> str:
    """Generate a deterministic SHA256 identity for a raw message.

    SHA256(user_id|captured_at_iso|ORIGINATOR|NORMALIZED_BODY)

    Missing timestamp and originator contribute empty strings, so a message
    surfaced without metadata by one channel hashes differently from the same
    message with metadata. The remote duplicate check covers that case.

    Returns:
        64-character lowercase hex SHA256 hash.
    """
    captured = message.captured_at.isoformat() if message.captured_at else ""
    originator = (message.originator or "").strip().upper()
    raw = f"{user_id}|{captured}|{originator}|{normalize_body(message.body)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
