# mcp_ledger/tool_modules/banking_tools.py
import logging
from typing import Any, Dict

from pydantic import BaseModel, Field

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER
from ..upstream.formatting import summarize_bank_account, summarize_bank_transaction

logger = logging.getLogger(__name__)


class NoArguments(BaseModel):
    pass


class BankTransactionsInput(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)


@REGISTRY_BUILDER.operation(
    name="get_bank_accounts",
    category="banking",
    summary="Bank accounts in the chart of accounts.",
    input_model=NoArguments,
)
async def get_bank_accounts(ctx: OperationContext, args: NoArguments) -> Dict[str, Any]:
    client = await ctx.xero()
    accounts = [summarize_bank_account(a) for a in await client.get_bank_accounts()]
    return {"count": len(accounts), "accounts": accounts}


@REGISTRY_BUILDER.operation(
    name="get_bank_transactions",
    category="banking",
    summary="Most recent spend and receive money transactions.",
    input_model=BankTransactionsInput,
)
async def get_bank_transactions(ctx: OperationContext, args: BankTransactionsInput) -> Dict[str, Any]:
    client = await ctx.xero()
    transactions = await client.get_bank_transactions()
    summaries = [summarize_bank_transaction(t) for t in transactions[: args.limit]]
    return {"count": len(summaries), "transactions": summaries}


logger.info("Banking operations registered.")
