# mcp_ledger/gateway_auth/bearer.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from ..core.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

TOKEN_TYPE = "gateway_session"
SIGN_IN_ACTION = "Sign in again at /login to get a new connection URL."


class BearerTokenManager:
    """
    Issues and verifies signed session tokens.

    Verification is stateless: a token is valid exactly when its signature
    checks out and `exp` has not passed.
    """

    def __init__(self, signing_secret: Optional[str], algorithm: str = "HS256", lifetime_days: int = 30):
        self.signing_secret = signing_secret
        self.algorithm = algorithm
        self.lifetime = timedelta(days=lifetime_days)

    def _secret(self) -> str:
        if not self.signing_secret:
            raise ConfigurationError("BEARER_SIGNING_SECRET is not configured.")
        return self.signing_secret

    def issue(self, user_id: str, email: str, issued_at: Optional[datetime] = None) -> str:
        iat = issued_at or datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "email": email,
            "type": TOKEN_TYPE,
            "iat": int(iat.timestamp()),
            "exp": int((iat + self.lifetime).timestamp()),
        }
        return jwt.encode(payload, self._secret(), algorithm=self.algorithm)

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Return the token claims.

        Raises:
            AuthenticationError: bad signature, malformed token, wrong type or expired
        """
        try:
            claims = jwt.decode(
                token,
                self._secret(),
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired bearer token.")
            raise AuthenticationError("Your session token has expired.", action=SIGN_IN_ACTION)
        except jwt.PyJWTError as e:
            logger.warning(f"Rejected invalid bearer token: {type(e).__name__}")
            raise AuthenticationError("The session token is not valid.", action=SIGN_IN_ACTION)

        if claims.get("type") != TOKEN_TYPE:
            raise AuthenticationError("The session token is not valid.", action=SIGN_IN_ACTION)
        return claims


def looks_like_jwt(token: str) -> bool:
    parts = token.split(".")
    return len(parts) == 3 and all(parts)
