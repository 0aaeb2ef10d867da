# mcp_ledger/tool_modules/organisation_tools.py
import logging
from typing import Any, Dict

from pydantic import BaseModel

from ..core.dispatcher import OperationContext
from ..core.global_registry import REGISTRY_BUILDER

logger = logging.getLogger(__name__)


class NoArguments(BaseModel):
    pass


@REGISTRY_BUILDER.operation(
    name="get_organisation",
    category="organisation",
    summary="Name, base currency, financial year end and tax settings of the connected organisation.",
    input_model=NoArguments,
)
async def get_organisation(ctx: OperationContext, args: NoArguments) -> Dict[str, Any]:
    client = await ctx.xero()
    org = await client.get_organisation()
    return {
        "organisation_id": org.get("OrganisationID"),
        "name": org.get("Name"),
        "legal_name": org.get("LegalName"),
        "base_currency": org.get("BaseCurrency"),
        "country_code": org.get("CountryCode"),
        "financial_year_end_day": org.get("FinancialYearEndDay"),
        "financial_year_end_month": org.get("FinancialYearEndMonth"),
        "sales_tax_basis": org.get("SalesTaxBasis"),
        "organisation_type": org.get("OrganisationType"),
        "timezone": org.get("Timezone"),
    }


logger.info("Organisation operations registered.")
