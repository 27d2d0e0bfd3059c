"""Deterministic identifiers and write tags."""

import hashlib


def stable_hash_hex(*parts: str) -> str:
    """Create a stable SHA-256 digest over multiple string parts."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\n")
    return h.hexdigest()


SESSION_SEED = "session"


def session_account_id(owner_id: str, charger_id: str) -> str:
    """Derive the session account address from its owner and charger."""
    return stable_hash_hex(SESSION_SEED, owner_id, charger_id)[:32]


def usage_tag(session_id: str, sequence: int, timestamp_ms: int) -> str:
    """Uniqueness tag attached to each usage write.

    Two writes with the same increment would otherwise be byte-identical and
    may be collapsed by the transport.
    """
    return f"flowstream-{session_id}-{sequence}-{timestamp_ms}"


def short_id(value: str, length: int = 8) -> str:
    if not value or len(value) <= length:
        return value
    return value[:length] + "…"
