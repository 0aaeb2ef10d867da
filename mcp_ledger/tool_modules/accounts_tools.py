# mcp_ledger/tool_modules/accounts_tools.py
import logging
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER
from ..upstream.formatting import group_accounts_by_type

logger = logging.getLogger(__name__)

AccountType = Literal[
    "BANK", "CURRENT", "CURRLIAB", "FIXED", "LIABILITY", "EQUITY", "DEPRECIATN",
    "DIRECTCOSTS", "EXPENSE", "REVENUE", "SALES", "OTHERINCOME", "OVERHEADS",
]


class ListAccountsInput(BaseModel):
    account_type: Optional[AccountType] = Field(
        default=None, description="Only return accounts of this type, e.g. EXPENSE or REVENUE."
    )

    @field_validator("account_type", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value


@REGISTRY_BUILDER.operation(
    name="list_accounts",
    category="accounts",
    summary="Chart of accounts grouped by account type, optionally filtered to one type.",
    input_model=ListAccountsInput,
)
async def list_accounts(ctx: OperationContext, args: ListAccountsInput) -> Dict[str, Any]:
    client = await ctx.xero()
    accounts = await client.get_accounts(args.account_type)
    return {
        "account_type": args.account_type,
        "count": len(accounts),
        "groups": group_accounts_by_type(accounts),
    }


logger.info("Accounts operations registered.")
