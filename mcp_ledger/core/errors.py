# mcp_ledger/core/errors.py
from fastapi import HTTPException, status
from typing import Any, Dict, List, Optional


class ConfigurationError(RuntimeError):
    """Raised at startup when the gateway's configuration is incomplete or invalid."""


class GatewayError(HTTPException):
    """
    Base class for errors surfaced to gateway clients.

    Inherits from FastAPI's HTTPException so HTTP routes render it directly,
    while the MCP layer serialises `detail` into a ToolError message.
    """

    error: str = "gateway_error"
    default_status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        action: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.action = action
        detail: Dict[str, Any] = {"error": self.error, "message": message}
        if action:
            detail["action"] = action
        if self.retryable:
            detail["retryable"] = True
        if extra:
            detail.update(extra)
        super().__init__(
            status_code=status_code or self.default_status_code,
            detail=detail,
            headers=headers,
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.detail)

    def __str__(self) -> str:
        return self.message


class AuthenticationError(GatewayError):
    """Missing, invalid or expired bearer/OAuth credential."""

    error = "authentication_failed"
    default_status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required.", **kwargs: Any):
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class AuthorizationError(GatewayError):
    """Valid identity, insufficient permission tier."""

    error = "insufficient_permission"
    default_status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, required_level: int, current_level: int, **kwargs: Any):
        self.required_level = required_level
        self.current_level = current_level
        extra = {"required_level": required_level, "current_level": current_level}
        extra.update(kwargs.pop("extra", None) or {})
        super().__init__(message, extra=extra, **kwargs)


class ValidationError(GatewayError):
    """Malformed operation arguments; `fields` names every offending field."""

    error = "invalid_arguments"
    default_status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, fields: Optional[List[Dict[str, str]]] = None, **kwargs: Any):
        self.fields = fields or []
        super().__init__(message, extra={"fields": self.fields}, **kwargs)


class NotFoundError(GatewayError):
    """Referenced entity, session or operation does not exist."""

    error = "not_found"
    default_status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(GatewayError):
    """Failure talking to the external accounting API."""

    error = "upstream_error"
    default_status_code = status.HTTP_502_BAD_GATEWAY


class UpstreamRetryableError(UpstreamError):
    """Timeouts, rate limits and transient 5xx responses."""

    error = "upstream_unavailable"
    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("action", "Try again in a few moments.")
        super().__init__(message, **kwargs)


class ReconnectRequiredError(UpstreamError):
    """Revoked or expired upstream credentials; never retried automatically."""

    error = "reconnect_required"
    default_status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str = "Your Xero connection is no longer valid.", **kwargs: Any):
        kwargs.setdefault("action", "Reconnect your Xero account, then try again.")
        super().__init__(message, **kwargs)


def format_field_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic error dicts into `{field, message}` pairs."""
    fields = []
    for err in errors:
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
        fields.append({"field": loc or "arguments", "message": err.get("msg", "Invalid value")})
    return fields
