# mcp_ledger/oauth/errors.py
from fastapi import HTTPException, status


class OAuthError(HTTPException):
    """Base class for OAuth 2.0 errors, rendered as `{error, error_description?}` bodies."""

    def __init__(
        self,
        status_code: int,
        error: str,
        error_description: str | None = None,
        headers: dict | None = None,
    ):
        self.error = error
        self.error_description = error_description

        detail = {"error": error}
        if error_description:
            detail["error_description"] = error_description

        super().__init__(
            status_code=status_code,
            detail=detail,
            headers=headers or {"Cache-Control": "no-store"},
        )


class InvalidRequestError(OAuthError):
    """
    The request is missing a required parameter, includes an unsupported
    parameter value (other than grant type), repeats a parameter, or is
    otherwise malformed.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_request",
            error_description=error_description,
        )


class InvalidClientError(OAuthError):
    """
    Client authentication failed (unknown client, no client authentication
    included, or unsupported authentication method).
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = "Client authentication failed."):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="invalid_client",
            error_description=error_description,
            headers={"WWW-Authenticate": 'Basic realm="mcp_ledger"', "Cache-Control": "no-store"},
        )


class InvalidGrantError(OAuthError):
    """
    The authorization code is invalid, expired, already used, does not match
    the redirection URI used in the authorization request, or was issued to
    another client.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = "Invalid authorization grant."):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_grant",
            error_description=error_description,
        )


class UnsupportedGrantTypeError(OAuthError):
    """
    The authorization grant type is not supported by the authorization server.
    (RFC 6749 - Section 5.2)
    """

    def __init__(self, error_description: str | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="unsupported_grant_type",
            error_description=error_description,
        )


class ServerError(OAuthError):
    """
    The authorization server encountered an unexpected condition that
    prevented it from fulfilling the request.
    (RFC 6749 - Section 4.1.2.1)
    """

    def __init__(self, error_description: str | None = "The authorization server encountered an internal error."):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="server_error",
            error_description=error_description,
        )
