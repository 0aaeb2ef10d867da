# mcp_ledger/tool_modules/report_tools.py
import datetime
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER
from ..upstream.formatting import flatten_report

logger = logging.getLogger(__name__)


class ProfitAndLossInput(BaseModel):
    from_date: Optional[datetime.date] = Field(default=None, description="Start of the period (default: start of this month).")
    to_date: Optional[datetime.date] = Field(default=None, description="End of the period (default: end of this month).")

    @model_validator(mode="after")
    def _ordered(self):
        if self.from_date and self.to_date and self.from_date > self.to_date:
            raise ValueError("from_date must be on or before to_date")
        return self


class BalanceSheetInput(BaseModel):
    date: Optional[datetime.date] = Field(default=None, description="Balance date (default: end of this month).")


@REGISTRY_BUILDER.operation(
    name="get_profit_and_loss",
    category="reports",
    summary="Profit and loss report for a period.",
    input_model=ProfitAndLossInput,
)
async def get_profit_and_loss(ctx: OperationContext, args: ProfitAndLossInput) -> Dict[str, Any]:
    client = await ctx.xero()
    report = await client.get_profit_and_loss(
        from_date=args.from_date.isoformat() if args.from_date else None,
        to_date=args.to_date.isoformat() if args.to_date else None,
    )
    return flatten_report(report)


@REGISTRY_BUILDER.operation(
    name="get_balance_sheet",
    category="reports",
    summary="Balance sheet as of a date.",
    input_model=BalanceSheetInput,
)
async def get_balance_sheet(ctx: OperationContext, args: BalanceSheetInput) -> Dict[str, Any]:
    client = await ctx.xero()
    report = await client.get_balance_sheet(date=args.date.isoformat() if args.date else None)
    return flatten_report(report)


logger.info("Report operations registered.")
