# mcp_ledger/upstream/formatting.py
"""
Compact views of Xero records.

Xero responses are verbose; the LLM gets the fields it needs to answer
questions and to chain follow-up calls (ids, numbers, amounts, dates).
"""
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

_MS_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")


def parse_xero_date(record: Dict[str, Any], key: str) -> Optional[date]:
    """
    Read a date field from a Xero record.

    Prefers the ISO `<key>String` variant and falls back to the
    `/Date(1518685950940+0000)/` form.
    """
    iso_value = record.get(f"{key}String")
    if isinstance(iso_value, str) and len(iso_value) >= 10:
        try:
            return date.fromisoformat(iso_value[:10])
        except ValueError:
            pass
    raw = record.get(key)
    if isinstance(raw, str):
        match = _MS_DATE.match(raw)
        if match:
            return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc).date()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            return None
    return None


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def summarize_invoice(invoice: Dict[str, Any]) -> Dict[str, Any]:
    contact = invoice.get("Contact") or {}
    return {
        "invoice_id": invoice.get("InvoiceID"),
        "invoice_number": invoice.get("InvoiceNumber"),
        "type": invoice.get("Type"),
        "status": invoice.get("Status"),
        "contact_id": contact.get("ContactID"),
        "contact_name": contact.get("Name"),
        "reference": invoice.get("Reference"),
        "date": _iso(parse_xero_date(invoice, "Date")),
        "due_date": _iso(parse_xero_date(invoice, "DueDate")),
        "total": invoice.get("Total"),
        "amount_due": invoice.get("AmountDue"),
        "amount_paid": invoice.get("AmountPaid"),
        "currency": invoice.get("CurrencyCode"),
    }


def summarize_contact(contact: Dict[str, Any]) -> Dict[str, Any]:
    phones = [p for p in contact.get("Phones") or [] if p.get("PhoneNumber")]
    return {
        "contact_id": contact.get("ContactID"),
        "name": contact.get("Name"),
        "email": contact.get("EmailAddress"),
        "phone": phones[0]["PhoneNumber"] if phones else None,
        "account_number": contact.get("AccountNumber"),
        "status": contact.get("ContactStatus"),
        "is_customer": contact.get("IsCustomer"),
        "is_supplier": contact.get("IsSupplier"),
    }


def summarize_bank_account(account: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "account_id": account.get("AccountID"),
        "name": account.get("Name"),
        "code": account.get("Code"),
        "bank_account_number": account.get("BankAccountNumber"),
        "currency": account.get("CurrencyCode"),
        "status": account.get("Status"),
    }


def summarize_account(account: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "account_id": account.get("AccountID"),
        "code": account.get("Code"),
        "name": account.get("Name"),
        "type": account.get("Type"),
        "class": account.get("Class"),
        "tax_type": account.get("TaxType"),
        "status": account.get("Status"),
    }


# Financial statement order used when grouping the chart of accounts
ACCOUNT_TYPE_ORDER = (
    "BANK", "CURRENT", "CURRLIAB", "FIXED", "LIABILITY", "EQUITY", "DEPRECIATN",
    "DIRECTCOSTS", "EXPENSE", "REVENUE", "SALES", "OTHERINCOME", "OVERHEADS",
)


def group_accounts_by_type(accounts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Group account summaries by type; known types in statement order, others alphabetically after."""
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for account in accounts:
        summary = summarize_account(account)
        groups.setdefault(summary["type"] or "OTHER", []).append(summary)

    def order(account_type: str):
        if account_type in ACCOUNT_TYPE_ORDER:
            return (0, ACCOUNT_TYPE_ORDER.index(account_type), "")
        return (1, 0, account_type)

    return [
        {"type": account_type, "accounts": groups[account_type]}
        for account_type in sorted(groups, key=order)
    ]


def summarize_bank_transaction(transaction: Dict[str, Any]) -> Dict[str, Any]:
    contact = transaction.get("Contact") or {}
    bank_account = transaction.get("BankAccount") or {}
    return {
        "bank_transaction_id": transaction.get("BankTransactionID"),
        "type": transaction.get("Type"),
        "status": transaction.get("Status"),
        "date": _iso(parse_xero_date(transaction, "Date")),
        "contact_name": contact.get("Name"),
        "bank_account": bank_account.get("Name"),
        "reference": transaction.get("Reference"),
        "total": transaction.get("Total"),
        "is_reconciled": transaction.get("IsReconciled"),
    }


def flatten_report(report: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a Xero report's nested Rows/Cells into `{section, label, values}` lines."""
    header: List[str] = []
    lines: List[Dict[str, Any]] = []
    for row in report.get("Rows") or []:
        row_type = row.get("RowType")
        if row_type == "Header":
            header = [cell.get("Value", "") for cell in row.get("Cells") or []]
            continue
        section = row.get("Title") or ""
        for inner in row.get("Rows") or []:
            cells = [cell.get("Value", "") for cell in inner.get("Cells") or []]
            if not cells:
                continue
            lines.append({
                "section": section,
                "label": cells[0],
                "values": cells[1:],
                "is_total": inner.get("RowType") == "SummaryRow",
            })
    return {
        "report_name": report.get("ReportName"),
        "report_titles": report.get("ReportTitles") or [],
        "report_date": report.get("ReportDate"),
        "columns": header[1:] if header else [],
        "lines": lines,
    }


AGING_BUCKETS = (("current", None, 0), ("1_30", 1, 30), ("31_60", 31, 60), ("61_90", 61, 90), ("over_90", 91, None))


def _bucket_for(days_overdue: int) -> str:
    for name, low, high in AGING_BUCKETS:
        if (low is None or days_overdue >= low) and (high is None or days_overdue <= high):
            return name
    return "over_90"


def age_invoices(invoices: List[Dict[str, Any]], as_of: date) -> Dict[str, Any]:
    """
    Group outstanding invoices per contact.

    Contacts are ordered by total amount due, largest first; each carries
    its overdue amount and an aging breakdown by days past the due date.
    """
    by_contact: Dict[str, Dict[str, Any]] = {}
    for invoice in invoices:
        amount_due = float(invoice.get("AmountDue") or 0)
        if amount_due <= 0:
            continue
        contact = invoice.get("Contact") or {}
        key = contact.get("ContactID") or contact.get("Name") or "unknown"
        entry = by_contact.setdefault(key, {
            "contact_id": contact.get("ContactID"),
            "contact_name": contact.get("Name"),
            "total_due": 0.0,
            "overdue": 0.0,
            "invoice_count": 0,
            "aging": {name: 0.0 for name, _, _ in AGING_BUCKETS},
        })
        due = parse_xero_date(invoice, "DueDate")
        days_overdue = (as_of - due).days if due else 0
        entry["total_due"] += amount_due
        entry["invoice_count"] += 1
        if days_overdue > 0:
            entry["overdue"] += amount_due
        entry["aging"][_bucket_for(days_overdue)] += amount_due

    contacts = sorted(by_contact.values(), key=lambda c: c["total_due"], reverse=True)
    for entry in contacts:
        entry["total_due"] = round(entry["total_due"], 2)
        entry["overdue"] = round(entry["overdue"], 2)
        entry["aging"] = {k: round(v, 2) for k, v in entry["aging"].items()}
    return {
        "as_of": as_of.isoformat(),
        "total_due": round(sum(c["total_due"] for c in contacts), 2),
        "total_overdue": round(sum(c["overdue"] for c in contacts), 2),
        "contacts": contacts,
    }
