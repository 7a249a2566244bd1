"""
auth/passwords.py -- Salted scrypt password hashing.

Stored format: "<salt>:<derived key hex>". scrypt is memory-hard, so a stolen
table is expensive to brute-force on GPUs. Parameters (N=16384, r=8, p=1,
64-byte key) are fixed: changing them would invalidate every stored hash.

The salt is either the deployment-wide PASSWORD_HASH_SALT (when configured)
or 8 random bytes as hex. It is stored with the digest, so verification works
for both.

Timing equalization: DUMMY_HASH lets callers run a full verification even
when the account does not exist or has no password, so response time does not
reveal which case occurred.

Layer rule: no imports from admins/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Optional

_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LEN = 64
_SALT_BYTES = 8


def _derive(password: str, salt: str) -> str:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LEN,
    ).hex()


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Return "salt:digest" for password. A random salt is generated when none is given."""
    salt = salt or secrets.token_hex(_SALT_BYTES)
    return f"{salt}:{_derive(password, salt)}"


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    """Return True if password matches stored_hash.

    A missing, empty or malformed stored hash never verifies, and neither
    does a password that is not a string. The digest
    comparison is constant-time.
    """
    if not isinstance(password, str) or not isinstance(stored_hash, str):
        return False
    if not stored_hash or not password:
        return False
    salt, sep, digest = stored_hash.partition(":")
    if not sep or not salt or not digest:
        return False
    return hmac.compare_digest(_derive(password, salt), digest)


# Computed once at import so the first failed login is not measurably faster
# than later ones.
DUMMY_HASH: str = hash_password("admin-auth-timing-dummy")
