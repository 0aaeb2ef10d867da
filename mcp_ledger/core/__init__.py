# mcp_ledger/core/__init__.py

"""
Core module initialization for the MCP Ledger gateway.

Exposes the error taxonomy and the operation registry primitives.
"""

from .errors import (
    ConfigurationError,
    GatewayError,
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    NotFoundError,
    UpstreamError,
    UpstreamRetryableError,
    ReconnectRequiredError,
    format_field_errors,
)
from .registry import OperationDescriptor, RegistryBuilder, ToolRegistry

__all__ = [
    "ConfigurationError",
    "GatewayError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "UpstreamError",
    "UpstreamRetryableError",
    "ReconnectRequiredError",
    "format_field_errors",
    "OperationDescriptor",
    "RegistryBuilder",
    "ToolRegistry",
]
