# mcp_ledger/oauth/pkce.py
import base64
import hashlib
import re
import secrets

SUPPORTED_CHALLENGE_METHODS = ("S256",)

_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def generate_pkce_code_verifier(length: int = 64) -> str:
    """
    Generates a cryptographically random PKCE code verifier.
    RFC 7636 allows 43 to 128 unreserved characters. (Section 4.1)
    """
    if not (43 <= length <= 128):
        raise ValueError("PKCE code verifier length must be between 43 and 128 characters.")
    return secrets.token_urlsafe(length)[:length]


def generate_pkce_code_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding. (RFC 7636 - Section 4.2)"""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def validate_pkce_code_verifier_format(code_verifier: str) -> bool:
    return bool(_VERIFIER_PATTERN.match(code_verifier))


def verify_pkce(code_verifier: str, code_challenge: str, method: str = "S256") -> bool:
    """Constant-time comparison of the derived challenge against the stored one."""
    if method not in SUPPORTED_CHALLENGE_METHODS:
        return False
    if not validate_pkce_code_verifier_format(code_verifier):
        return False
    return secrets.compare_digest(
        generate_pkce_code_challenge(code_verifier).encode("utf-8"), code_challenge.encode("utf-8")
    )
