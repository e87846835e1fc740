"""API key helpers for tenant users.

Keys look like ``sk_AB12CD_<token>``. The ``sk_AB12CD`` part is the
prefix used to identify the key; only the prefix and a SHA-256 hash of
the full key are ever stored.
"""

import hashlib
import secrets
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

KEY_PREFIX = "sk"
PREFIX_ALPHABET = string.ascii_uppercase + string.digits
PREFIX_RANDOM_LENGTH = 6


def generate_api_key() -> tuple[str, str]:
    """Generate a new API key and its identifying prefix.

    Returns:
        (raw_key, prefix) - raw_key is shown once to the user, prefix is stored
    """
    random_part = "".join(secrets.choice(PREFIX_ALPHABET) for _ in range(PREFIX_RANDOM_LENGTH))
    prefix = f"{KEY_PREFIX}_{random_part}"
    raw_key = f"{prefix}_{secrets.token_urlsafe(32)}"
    return raw_key, prefix


def extract_prefix(key: str) -> Optional[str]:
    """Return the ``sk_XXXXXX`` prefix of a raw key, or None if malformed."""
    parts = key.split("_", 2)
    if len(parts) != 3 or parts[0] != KEY_PREFIX or len(parts[1]) != PREFIX_RANDOM_LENGTH:
        return None
    return f"{parts[0]}_{parts[1]}"


def hash_api_key(key: str) -> str:
    """Hash an API key for storage."""
    return hashlib.sha256(key.encode()).hexdigest()


def verify_api_key(key: str, key_hash: str) -> bool:
    return secrets.compare_digest(hash_api_key(key), key_hash)


def mask_api_key(key: str) -> str:
    """Mask an API key for display.

    Example: sk_AB12CD...xyz9
    """
    if len(key) <= 10:
        return key[:4] + "..." + key[-3:]
    return key[:9] + "..." + key[-4:]


def has_permission(permissions: list[str], required: str) -> bool:
    """Check if a permission list grants the required permission."""
    for perm in permissions:
        if perm == required:
            return True
        # Wildcard support: "automations.*" matches "automations.read"
        if perm.endswith(".*"):
            prefix = perm[:-2]
            if required.startswith(prefix + "."):
                return True
        # Full wildcard
        if perm == "*":
            return True
    return False


@dataclass
class ApiKey:
    """Stored API key record. Never holds the plaintext key."""

    name: str
    prefix: str
    key_hash: str
    permissions: list[str] = field(default_factory=lambda: ["read"])
    expires_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_used_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def has_permission(self, required: str) -> bool:
        return has_permission(self.permissions, required)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "prefix": self.prefix,
            "permissions": list(self.permissions),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }
