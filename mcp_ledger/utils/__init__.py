# mcp_ledger/utils/__init__.py

"""
Utility module initialization file.

Exposes the encryption helpers used to protect upstream credentials at rest.
"""

from .security import FernetEncryptor, generate_fernet_key, generate_signing_secret

__all__ = ["FernetEncryptor", "generate_fernet_key", "generate_signing_secret"]
