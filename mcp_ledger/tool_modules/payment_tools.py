# mcp_ledger/tool_modules/payment_tools.py
import datetime
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER

logger = logging.getLogger(__name__)


class RecordPaymentInput(BaseModel):
    invoice_id: str = Field(min_length=1)
    amount: float = Field(gt=0)
    account_id: Optional[str] = Field(default=None, description="Bank account the money moved through.")
    account_code: Optional[str] = Field(default=None, description="Alternative to account_id.")
    date: Optional[datetime.date] = Field(default=None, description="Payment date (default today).")
    reference: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _has_account(self):
        if not self.account_id and not self.account_code:
            raise ValueError("provide account_id or account_code")
        return self


async def _payment_before_state(ctx: OperationContext, args: RecordPaymentInput) -> Dict[str, Any]:
    client = await ctx.xero()
    return {"invoice": await client.get_invoice(args.invoice_id)}


@REGISTRY_BUILDER.operation(
    name="record_payment",
    category="payments",
    summary="Record a payment against an approved invoice or bill.",
    input_model=RecordPaymentInput,
    required_level=2,
    entity_type="payment",
    before_state=_payment_before_state,
)
async def record_payment(ctx: OperationContext, args: RecordPaymentInput) -> Dict[str, Any]:
    account = {"AccountID": args.account_id} if args.account_id else {"Code": args.account_code}
    payment: Dict[str, Any] = {
        "Invoice": {"InvoiceID": args.invoice_id},
        "Account": account,
        "Amount": args.amount,
        "Date": (args.date or datetime.date.today()).isoformat(),
    }
    if args.reference:
        payment["Reference"] = args.reference
    client = await ctx.xero()
    return await client.create_payment(payment)


logger.info("Payment operations registered.")
