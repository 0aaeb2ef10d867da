# mcp_ledger/upstream/xero_client.py
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import NotFoundError, ReconnectRequiredError, UpstreamError
from ..settings import settings
from .retry import Sleep, send_with_retries

logger = logging.getLogger(__name__)

XERO_PAGE_SIZE = 100
WRITE_METHODS = frozenset({"PUT", "POST"})


def extract_xero_error(response: httpx.Response) -> str:
    """Pull the most specific human-readable message out of a Xero error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return str(body)[:200]

    messages: List[str] = []
    for element in body.get("Elements") or []:
        for problem in element.get("ValidationErrors") or []:
            if problem.get("Message"):
                messages.append(problem["Message"])
    if messages:
        return "; ".join(messages)
    return (
        body.get("Detail")
        or body.get("Message")
        or body.get("error_description")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )


class XeroApiClient:
    """
    Thin async wrapper over the Xero Accounting API for a single organisation.

    Every call is bounded by UPSTREAM_TIMEOUT_SECONDS and retried on
    transient failures. Instances are cheap; the adapter hands out a fresh
    one per call with the current access token.
    """

    def __init__(
        self,
        access_token: str,
        tenant_id: str,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.access_token = access_token
        self.tenant_id = tenant_id
        self.base_url = (base_url or settings.xero_api_base_url).rstrip("/")
        self._transport = transport
        self._sleep = sleep

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "xero-tenant-id": self.tenant_id,
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        headers = self._headers()
        if method.upper() in WRITE_METHODS:
            # One key per logical call, reused by every retry, so Xero applies a write at most once
            headers["Idempotency-Key"] = str(uuid.uuid4())

        async with httpx.AsyncClient(
            transport=self._transport, timeout=settings.upstream_timeout_seconds
        ) as http:
            async def send() -> httpx.Response:
                return await http.request(
                    method, url, params=clean_params, json=json_body, headers=headers
                )

            response = await send_with_retries(
                send,
                description=f"Xero {method} {path}",
                max_retries=settings.upstream_max_retries,
                backoff_base=settings.upstream_backoff_base_seconds,
                sleep=self._sleep,
            )

        if response.status_code == 401:
            logger.warning(f"Xero rejected the access token for {method} {path}.")
            raise ReconnectRequiredError("Xero rejected the stored access token.")
        if response.status_code == 403:
            raise UpstreamError(
                f"Xero refused access to {path}: {extract_xero_error(response)}",
                status_code=403,
                action="Reconnect Xero and grant the requested permissions.",
            )
        if response.status_code == 404:
            raise NotFoundError(f"Xero could not find {path}.", action="Check the identifier and try again.")
        if response.status_code >= 400:
            raise UpstreamError(
                f"Xero rejected the request: {extract_xero_error(response)}",
                status_code=400,
                action="Check the values and try again.",
            )
        if not response.content:
            return {}
        return response.json()

    # Invoices

    async def get_invoices(
        self,
        statuses: Optional[List[str]] = None,
        invoice_type: Optional[str] = None,
        page: int = 1,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"page": page}
        if statuses:
            params["Statuses"] = ",".join(s.upper() for s in statuses)
        if invoice_type:
            params["where"] = f'Type=="{invoice_type}"'
        data = await self._request("GET", "Invoices", params=params)
        return data.get("Invoices", [])

    async def get_all_invoices(
        self, statuses: Optional[List[str]] = None, invoice_type: Optional[str] = None, max_pages: int = 10
    ) -> List[Dict[str, Any]]:
        """Walk result pages (100 invoices each) until a short page or `max_pages`."""
        collected: List[Dict[str, Any]] = []
        for page in range(1, max_pages + 1):
            batch = await self.get_invoices(statuses=statuses, invoice_type=invoice_type, page=page)
            collected.extend(batch)
            if len(batch) < XERO_PAGE_SIZE:
                break
        return collected

    async def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"Invoices/{invoice_id}")
        invoices = data.get("Invoices") or []
        if not invoices:
            raise NotFoundError(f"Invoice {invoice_id} was not found in Xero.")
        return invoices[0]

    async def create_invoice(self, invoice: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", "Invoices", json_body={"Invoices": [invoice]})
        return (data.get("Invoices") or [{}])[0]

    async def update_invoice(self, invoice_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        body = {"Invoices": [{"InvoiceID": invoice_id, **changes}]}
        data = await self._request("POST", f"Invoices/{invoice_id}", json_body=body)
        return (data.get("Invoices") or [{}])[0]

    async def create_credit_note(self, credit_note: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", "CreditNotes", json_body={"CreditNotes": [credit_note]})
        return (data.get("CreditNotes") or [{}])[0]

    # Contacts

    async def get_contacts(
        self, search_term: Optional[str] = None, page: int = 1, include_archived: bool = False
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"page": page, "searchTerm": search_term}
        if include_archived:
            params["includeArchived"] = "true"
        data = await self._request("GET", "Contacts", params=params)
        return data.get("Contacts", [])

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"Contacts/{contact_id}")
        contacts = data.get("Contacts") or []
        if not contacts:
            raise NotFoundError(f"Contact {contact_id} was not found in Xero.")
        return contacts[0]

    async def create_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", "Contacts", json_body={"Contacts": [contact]})
        return (data.get("Contacts") or [{}])[0]

    async def update_contact(self, contact_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        body = {"Contacts": [{"ContactID": contact_id, **changes}]}
        data = await self._request("POST", f"Contacts/{contact_id}", json_body=body)
        return (data.get("Contacts") or [{}])[0]

    # Payments and banking

    async def create_payment(self, payment: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("PUT", "Payments", json_body={"Payments": [payment]})
        return (data.get("Payments") or [{}])[0]

    async def get_accounts(self, account_type: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if account_type:
            account_type = account_type.upper()
            params["where"] = f'Type=="{account_type}"'
        data = await self._request("GET", "Accounts", params=params)
        accounts = data.get("Accounts", [])
        if account_type:
            # Xero occasionally ignores the where clause, so filter again locally
            accounts = [a for a in accounts if str(a.get("Type", "")).upper() == account_type]
        return accounts

    async def get_bank_accounts(self) -> List[Dict[str, Any]]:
        return await self.get_accounts("BANK")

    async def get_bank_transactions(self, page: int = 1) -> List[Dict[str, Any]]:
        data = await self._request("GET", "BankTransactions", params={"page": page})
        return data.get("BankTransactions", [])

    # Reports and organisation

    async def get_profit_and_loss(
        self, from_date: Optional[str] = None, to_date: Optional[str] = None
    ) -> Dict[str, Any]:
        data = await self._request(
            "GET", "Reports/ProfitAndLoss", params={"fromDate": from_date, "toDate": to_date}
        )
        return (data.get("Reports") or [{}])[0]

    async def get_balance_sheet(self, date: Optional[str] = None) -> Dict[str, Any]:
        data = await self._request("GET", "Reports/BalanceSheet", params={"date": date})
        return (data.get("Reports") or [{}])[0]

    async def get_organisation(self) -> Dict[str, Any]:
        data = await self._request("GET", "Organisation")
        return (data.get("Organisations") or [{}])[0]
