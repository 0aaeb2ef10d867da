# mcp_ledger/gateway_auth/accounts.py
import logging
import uuid
from typing import Optional

from ..core.errors import AuthenticationError, ValidationError
from ..credentials.models import AppUser
from ..credentials.storage_interfaces import AbstractAccountStore
from .passwords import PASSWORD_MIN_LENGTH, hash_password, verify_password_with_upgrade

logger = logging.getLogger(__name__)


class AccountService:
    """Email/password accounts shared by the login page, the token API and the OAuth form."""

    def __init__(self, account_store: AbstractAccountStore):
        self.account_store = account_store

    async def authenticate(self, email: str, password: str) -> AppUser:
        user = await self.account_store.get_user_by_email(email)
        result = verify_password_with_upgrade(password, user.password_hash if user else "")
        if user is None or not result.ok:
            logger.info("Login refused: unknown email or wrong password.")
            raise AuthenticationError(
                "Email or password is incorrect.", action="Check your details and try again."
            )
        if result.upgraded_hash:
            await self.account_store.update_password_hash(user.user_id, result.upgraded_hash)
        await self.account_store.record_login(user.user_id)
        return user

    async def register(self, email: str, password: str, invite_code: str, display_name: Optional[str] = None) -> AppUser:
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(
                "Password is too short.",
                fields=[{"field": "password", "message": f"Use at least {PASSWORD_MIN_LENGTH} characters."}],
            )
        if "@" not in email:
            raise ValidationError(
                "Email address is not valid.", fields=[{"field": "email", "message": "Enter a valid email."}]
            )
        if await self.account_store.get_user_by_email(email):
            raise ValidationError(
                "An account with this email already exists.",
                fields=[{"field": "email", "message": "Email is already registered."}],
            )
        if not await self.account_store.redeem_invite(invite_code):
            raise ValidationError(
                "The invite code is invalid, expired or already used.",
                fields=[{"field": "invite_code", "message": "Ask an administrator for a new invite code."}],
            )
        user = AppUser(
            user_id=str(uuid.uuid4()),
            email=email.strip().lower(),
            password_hash=hash_password(password),
            display_name=display_name,
        )
        return await self.account_store.create_user(user)
