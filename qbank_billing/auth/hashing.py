"""
Bearer key hashing utilities.

Security notes:
  • SHA-256 is used for key hashing — keys are high-entropy random strings,
    so a slow password hash buys nothing and adds latency to every
    analysis request.
  • Raw keys carry the qbk_ prefix so they are recognisable in a leak scan.
  • generate_api_key() returns the raw key exactly once. It is never stored.
"""

import hashlib
import secrets

KEY_PREFIX = "qbk_"
DISPLAY_PREFIX_LEN = 12


def hash_api_key(raw_key: str) -> str:
    """Return the SHA-256 hex digest used for storage and lookup."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def display_prefix(raw_key: str) -> str:
    """First characters of a key, safe to show in logs and the UI."""
    return raw_key[:DISPLAY_PREFIX_LEN]


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new user key.

    Returns:
        (raw_key, key_hash) — raw_key is shown once, key_hash is stored.
    """
    raw_key = f"{KEY_PREFIX}{secrets.token_hex(32)}"
    return raw_key, hash_api_key(raw_key)
