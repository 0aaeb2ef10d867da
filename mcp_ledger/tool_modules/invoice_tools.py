# mcp_ledger/tool_modules/invoice_tools.py
import logging
import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.dispatcher import OperationContext
from ..core.errors import ValidationError
from ..core.global_registry import REGISTRY_BUILDER
from ..upstream.formatting import age_invoices, summarize_invoice

logger = logging.getLogger(__name__)

InvoiceStatus = Literal["DRAFT", "SUBMITTED", "AUTHORISED", "PAID", "VOIDED", "DELETED"]
InvoiceType = Literal["ACCREC", "ACCPAY"]

# Statuses Xero still allows to be deleted rather than voided
DELETABLE_STATUSES = ("DRAFT", "SUBMITTED")


class LineItem(BaseModel):
    description: str = Field(min_length=1, max_length=4000)
    quantity: float = Field(default=1, gt=0)
    unit_amount: float
    account_code: Optional[str] = Field(default=None, description="Chart-of-accounts code, e.g. '200'.")
    tax_type: Optional[str] = None

    def to_xero(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "Description": self.description,
            "Quantity": self.quantity,
            "UnitAmount": self.unit_amount,
        }
        if self.account_code:
            item["AccountCode"] = self.account_code
        if self.tax_type:
            item["TaxType"] = self.tax_type
        return item


class GetInvoicesInput(BaseModel):
    status: Optional[InvoiceStatus] = None
    invoice_type: Optional[InvoiceType] = Field(
        default=None, description="ACCREC for sales invoices, ACCPAY for bills."
    )
    limit: int = Field(default=20, ge=1, le=100)


class AgedInput(BaseModel):
    date: Optional[datetime.date] = Field(default=None, description="Age balances as of this date (default today).")


class CreateInvoiceDraftInput(BaseModel):
    contact_id: str = Field(min_length=1)
    invoice_type: InvoiceType = "ACCREC"
    line_items: List[LineItem] = Field(min_length=1)
    date: Optional[datetime.date] = None
    due_date: Optional[datetime.date] = None
    reference: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _due_after_date(self):
        if self.date and self.due_date and self.due_date < self.date:
            raise ValueError("due_date must not be before date")
        return self


class CreateCreditNoteDraftInput(BaseModel):
    contact_id: str = Field(min_length=1)
    credit_note_type: Literal["ACCRECCREDIT", "ACCPAYCREDIT"] = "ACCRECCREDIT"
    line_items: List[LineItem] = Field(min_length=1)
    date: Optional[datetime.date] = None
    reference: Optional[str] = Field(default=None, max_length=255)


class InvoiceIdInput(BaseModel):
    invoice_id: str = Field(min_length=1)


class UpdateInvoiceInput(BaseModel):
    invoice_id: str = Field(min_length=1)
    reference: Optional[str] = Field(default=None, max_length=255)
    due_date: Optional[datetime.date] = None
    line_items: Optional[List[LineItem]] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _has_changes(self):
        if self.reference is None and self.due_date is None and self.line_items is None:
            raise ValueError("provide at least one of reference, due_date or line_items")
        return self


async def _invoice_before_state(ctx: OperationContext, args: InvoiceIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.get_invoice(args.invoice_id)


@REGISTRY_BUILDER.operation(
    name="get_invoices",
    category="invoices",
    summary="List recent invoices and bills, optionally filtered by status and type.",
    input_model=GetInvoicesInput,
)
async def get_invoices(ctx: OperationContext, args: GetInvoicesInput) -> Dict[str, Any]:
    client = await ctx.xero()
    invoices = await client.get_invoices(
        statuses=[args.status] if args.status else None, invoice_type=args.invoice_type
    )
    summaries = [summarize_invoice(inv) for inv in invoices[: args.limit]]
    return {"count": len(summaries), "invoices": summaries}


@REGISTRY_BUILDER.operation(
    name="get_aged_receivables",
    category="invoices",
    summary="Outstanding sales invoices grouped by customer, with overdue amounts and aging buckets.",
    input_model=AgedInput,
)
async def get_aged_receivables(ctx: OperationContext, args: AgedInput) -> Dict[str, Any]:
    client = await ctx.xero()
    invoices = await client.get_all_invoices(statuses=["AUTHORISED"], invoice_type="ACCREC")
    return age_invoices(invoices, args.date or datetime.date.today())


@REGISTRY_BUILDER.operation(
    name="get_aged_payables",
    category="invoices",
    summary="Outstanding bills grouped by supplier, with overdue amounts and aging buckets.",
    input_model=AgedInput,
)
async def get_aged_payables(ctx: OperationContext, args: AgedInput) -> Dict[str, Any]:
    client = await ctx.xero()
    invoices = await client.get_all_invoices(statuses=["AUTHORISED"], invoice_type="ACCPAY")
    return age_invoices(invoices, args.date or datetime.date.today())


@REGISTRY_BUILDER.operation(
    name="create_invoice_draft",
    category="invoices",
    summary="Create a DRAFT invoice or bill. Drafts can be reviewed in Xero before approval.",
    input_model=CreateInvoiceDraftInput,
    required_level=1,
    entity_type="invoice",
)
async def create_invoice_draft(ctx: OperationContext, args: CreateInvoiceDraftInput) -> Dict[str, Any]:
    invoice: Dict[str, Any] = {
        "Type": args.invoice_type,
        "Status": "DRAFT",
        "Contact": {"ContactID": args.contact_id},
        "LineItems": [item.to_xero() for item in args.line_items],
    }
    if args.date:
        invoice["Date"] = args.date.isoformat()
    if args.due_date:
        invoice["DueDate"] = args.due_date.isoformat()
    if args.reference:
        invoice["Reference"] = args.reference
    client = await ctx.xero()
    return await client.create_invoice(invoice)


@REGISTRY_BUILDER.operation(
    name="create_credit_note_draft",
    category="invoices",
    summary="Create a DRAFT credit note for a customer or supplier.",
    input_model=CreateCreditNoteDraftInput,
    required_level=1,
    entity_type="credit_note",
)
async def create_credit_note_draft(ctx: OperationContext, args: CreateCreditNoteDraftInput) -> Dict[str, Any]:
    credit_note: Dict[str, Any] = {
        "Type": args.credit_note_type,
        "Status": "DRAFT",
        "Contact": {"ContactID": args.contact_id},
        "LineItems": [item.to_xero() for item in args.line_items],
    }
    if args.date:
        credit_note["Date"] = args.date.isoformat()
    if args.reference:
        credit_note["Reference"] = args.reference
    client = await ctx.xero()
    return await client.create_credit_note(credit_note)


@REGISTRY_BUILDER.operation(
    name="approve_invoice",
    category="invoices",
    summary="Approve a draft or submitted invoice (status becomes AUTHORISED).",
    input_model=InvoiceIdInput,
    required_level=2,
    entity_type="invoice",
    entity_id_field="invoice_id",
    before_state=_invoice_before_state,
)
async def approve_invoice(ctx: OperationContext, args: InvoiceIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.update_invoice(args.invoice_id, {"Status": "AUTHORISED"})


@REGISTRY_BUILDER.operation(
    name="update_invoice",
    category="invoices",
    summary="Change the reference, due date or line items of an invoice.",
    input_model=UpdateInvoiceInput,
    required_level=2,
    entity_type="invoice",
    entity_id_field="invoice_id",
    before_state=_invoice_before_state,
)
async def update_invoice(ctx: OperationContext, args: UpdateInvoiceInput) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if args.reference is not None:
        changes["Reference"] = args.reference
    if args.due_date is not None:
        changes["DueDate"] = args.due_date.isoformat()
    if args.line_items is not None:
        changes["LineItems"] = [item.to_xero() for item in args.line_items]
    client = await ctx.xero()
    return await client.update_invoice(args.invoice_id, changes)


@REGISTRY_BUILDER.operation(
    name="void_invoice",
    category="invoices",
    summary="Void an approved invoice that has no payments applied.",
    input_model=InvoiceIdInput,
    required_level=3,
    entity_type="invoice",
    entity_id_field="invoice_id",
    before_state=_invoice_before_state,
)
async def void_invoice(ctx: OperationContext, args: InvoiceIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return await client.update_invoice(args.invoice_id, {"Status": "VOIDED"})


@REGISTRY_BUILDER.operation(
    name="delete_draft_invoice",
    category="invoices",
    summary="Delete an invoice that is still DRAFT or SUBMITTED.",
    input_model=InvoiceIdInput,
    required_level=3,
    entity_type="invoice",
    entity_id_field="invoice_id",
    before_state=_invoice_before_state,
)
async def delete_draft_invoice(ctx: OperationContext, args: InvoiceIdInput) -> Dict[str, Any]:
    client = await ctx.xero()
    current = await client.get_invoice(args.invoice_id)
    if current.get("Status") not in DELETABLE_STATUSES:
        raise ValidationError(
            f"Invoice {current.get('InvoiceNumber') or args.invoice_id} is {current.get('Status')}; "
            "only DRAFT or SUBMITTED invoices can be deleted.",
            fields=[{"field": "invoice_id", "message": "Invoice is not a draft."}],
            action="Use void_invoice for approved invoices.",
        )
    return await client.update_invoice(args.invoice_id, {"Status": "DELETED"})


logger.info("Invoice operations registered.")
