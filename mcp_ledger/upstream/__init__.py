# mcp_ledger/upstream/__init__.py
from .retry import send_with_retries
from .xero_client import XeroApiClient, extract_xero_error
from .adapter import PROVIDER_NAME, UpstreamClientAdapter, get_upstream_adapter

__all__ = [
    "send_with_retries",
    "XeroApiClient",
    "extract_xero_error",
    "PROVIDER_NAME",
    "UpstreamClientAdapter",
    "get_upstream_adapter",
]
