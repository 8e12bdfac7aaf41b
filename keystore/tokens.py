"""
keystore/tokens.py -- Random material for key ids, key secrets, and the master key.

Entropy budget:
  Key id:     KEY_<YYYYmmddHHMMSS>_<8 hex>. The timestamp orders ids, the
              32-bit random suffix separates ids issued in the same second.
              KeyStore.generate() additionally re-draws on a collision with an
              id already in the store.
  Key secret: 24 random bytes, base64 (32 chars, 192 bits).
  Master key: >= 32 random bytes, base64, one line.

All values come from the secrets module (CSPRNG).
"""

import base64
import secrets
from datetime import datetime

_SECRET_BYTES = 24


def generate_key_id(now: datetime) -> str:
    return f"KEY_{now:%Y%m%d%H%M%S}_{secrets.token_hex(4)}"


def generate_secret() -> str:
    """Return a fresh key secret. Shown to the operator once, never stored in plaintext."""
    return base64.b64encode(secrets.token_bytes(_SECRET_BYTES)).decode("ascii")


def generate_master_key(nbytes: int = 32) -> str:
    """Return a base64-encoded master key of nbytes random bytes."""
    if nbytes < 32:
        raise ValueError("Master key must be at least 32 bytes.")
    return base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")
