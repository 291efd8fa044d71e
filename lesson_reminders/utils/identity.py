from __future__ import annotations

import secrets
import uuid

TOKEN_BYTES = 32


def new_record_id(prefix: str) -> str:
    """Build a unique, prefixed record identifier (``rem_1f2e...``)."""
    return f"{prefix}_{uuid.uuid4().hex}"


def new_confirmation_token() -> str:
    """Return an unguessable URL-safe token (256 bits of entropy)."""
    return secrets.token_urlsafe(TOKEN_BYTES)
