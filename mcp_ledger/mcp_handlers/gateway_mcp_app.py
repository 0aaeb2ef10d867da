# mcp_ledger/mcp_handlers/gateway_mcp_app.py
import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.dependencies import get_http_request

from ..core.dispatcher import GatewayDispatcher
from ..core.errors import AuthenticationError, GatewayError
from ..core.global_registry import get_tool_registry
from ..memory.sqlite_memory_store import get_sqlite_memory_store
from ..permissions.service import get_permission_service
from ..settings import settings
from ..upstream.adapter import get_upstream_adapter

logger = logging.getLogger(__name__)

# Short descriptions shown to the model before it lists a category
CATEGORY_DESCRIPTIONS = {
    "accounts": "chart of accounts",
    "banking": "bank accounts and transactions",
    "contacts": "customers and suppliers",
    "invoices": "sales invoices, bills and credit notes",
    "memory": "long-term memory of people, businesses and facts",
    "organisation": "details of the connected Xero organisation",
    "payments": "payments against invoices",
    "reports": "profit and loss, balance sheet",
}


def describe_categories(categories) -> str:
    return "\n".join(
        f"- {name}: {CATEGORY_DESCRIPTIONS.get(name, name)}" for name in categories
    )


def _caller_from_request() -> Tuple[str, Optional[str], Optional[str]]:
    """user_id, session_id and project_id placed in the scope state by the /mcp endpoint."""
    request = get_http_request()
    state = request.scope.get("state") or {}
    user_id = state.get("user_id")
    if not user_id:
        raise AuthenticationError("This connection is not authenticated.")
    return user_id, state.get("session_id"), state.get("project_id")


async def build_dispatcher() -> GatewayDispatcher:
    return GatewayDispatcher(
        get_tool_registry(),
        await get_permission_service(),
        await get_upstream_adapter(),
        await get_sqlite_memory_store(),
    )


def _tool_error(error: GatewayError) -> ToolError:
    return ToolError(json.dumps(error.to_dict()))


def _create_fastmcp_instance() -> FastMCP:
    registry = get_tool_registry()
    category_list = describe_categories(registry.categories)

    # FastMCP logs through the standard logging tree
    logging.getLogger("fastmcp").setLevel(settings.fastmcp_log_level.upper())

    gateway_mcp = FastMCP(
        name="MCP_Ledger_Gateway",
        instructions=(
            "Xero accounting gateway. Operations are grouped into categories:\n"
            f"{category_list}\n"
            "Call list_operations_in_category to see what you may run in a category, "
            "then execute_operation with the operation name and its arguments."
        ),
        mask_error_details=not settings.debug_mode,
    )

    @gateway_mcp.tool(
        description=(
            "List the operations available to you in one category, with their input schemas. "
            f"Categories:\n{category_list}"
        )
    )
    async def list_operations_in_category(category: str) -> Dict[str, Any]:
        try:
            user_id, _session_id, _project_id = _caller_from_request()
            dispatcher = await build_dispatcher()
            return await dispatcher.list_operations_in_category(user_id, category)
        except GatewayError as e:
            raise _tool_error(e) from e

    @gateway_mcp.tool(
        description=(
            "Run one operation by name. `arguments` must match the operation's input_schema "
            "from list_operations_in_category."
        )
    )
    async def execute_operation(name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            user_id, session_id, project_id = _caller_from_request()
            dispatcher = await build_dispatcher()
            return await dispatcher.execute_operation(
                user_id=user_id,
                name=name,
                arguments=arguments,
                session_id=session_id,
                project_id=project_id,
            )
        except GatewayError as e:
            logger.info(f"Operation '{name}' failed: {e.detail.get('error')}: {e.message}")
            raise _tool_error(e) from e

    logger.info(
        f"FastMCP instance created with {len(registry)} operations in {len(registry.categories)} categories."
    )
    return gateway_mcp


# Shared FastMCP server, wrapped by the StreamableHTTPSessionManager in main.py
gateway_fastmcp_server: FastMCP = _create_fastmcp_instance()
