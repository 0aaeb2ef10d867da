# mcp_ledger/gateway_auth/passwords.py
"""Password hashing with Argon2id."""

from dataclasses import dataclass
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from argon2.low_level import Type

_argon2_hasher = PasswordHasher(type=Type.ID)

PASSWORD_MIN_LENGTH = 8


@dataclass(frozen=True)
class VerifyResult:
    ok: bool
    upgraded_hash: Optional[str] = None


def hash_password(password: str) -> str:
    return _argon2_hasher.hash(password)


def verify_password_with_upgrade(plain_password: str, hashed_password: str) -> VerifyResult:
    """Verify a password and report a fresh hash when the stored parameters are outdated."""
    if not hashed_password or not hashed_password.startswith("$argon2"):
        # Unknown scheme: fail closed
        return VerifyResult(ok=False)
    try:
        _argon2_hasher.verify(hashed_password, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return VerifyResult(ok=False)

    if _argon2_hasher.check_needs_rehash(hashed_password):
        return VerifyResult(ok=True, upgraded_hash=hash_password(plain_password))
    return VerifyResult(ok=True)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return verify_password_with_upgrade(plain_password, hashed_password).ok
