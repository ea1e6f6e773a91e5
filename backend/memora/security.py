"""
Memora Backend — Secrets, Hashing & Token Generation
======================================================

What:  Hashing for phase passwords and download PINs, digests for owner
       access tokens, and random token generation.
Why:   Phase passwords and PINs are stored as salted bcrypt hashes and
       verified in constant time; they are never stored or compared in
       plain text.
How:   passlib CryptContext (bcrypt) for human-chosen secrets; sha256 hex
       digests for high-entropy machine tokens, which need a deterministic
       lookup key.
"""

import hashlib
import hmac
import re
import secrets

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

PIN_PATTERN = re.compile(r"^\d{4}$")


def hash_secret(secret: str) -> str:
    return pwd_context.hash(secret)


def verify_secret(secret: str, hashed: str) -> bool:
    """Constant-time check of a password or PIN against its bcrypt hash."""
    try:
        return pwd_context.verify(secret, hashed)
    except ValueError:
        # Malformed hash in storage
        return False


def is_valid_pin(pin: str) -> bool:
    return bool(PIN_PATTERN.match(pin))


def generate_token(nbytes: int = 48) -> str:
    """URL-safe random token (64 characters for the default 48 bytes)."""
    return secrets.token_urlsafe(nbytes)


def hash_api_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def constant_time_equals(left: str, right: str) -> bool:
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))
