# mcp_ledger/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastmcp.server.http import set_http_request
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.endpoints import HTTPEndpoint
from starlette.requests import Request as StarletteRequest
from starlette.responses import JSONResponse, Response as StarletteResponse
from starlette.routing import Route, Router as StarletteRouter
from starlette.types import Receive, Scope, Send

load_dotenv()

from .settings import settings
from .admin import (
    invites_admin_router, permissions_admin_router, snapshots_admin_router, users_admin_router,
)
from .core.errors import AuthenticationError
from .core.global_registry import get_tool_registry
from .credentials.sqlite_account_store import get_sqlite_account_store
from .credentials.sqlite_credential_store import get_sqlite_credential_store
from .gateway_auth import gateway_auth_router
from .gateway_auth.dependencies import extract_credential, get_auth_gateway
from .mcp_handlers.gateway_mcp_app import gateway_fastmcp_server
from .memory.endpoints import memory_router
from .memory.sqlite_memory_store import get_sqlite_memory_store
from .oauth.endpoints import oauth_router
from .oauth.errors import OAuthError
from .oauth.sqlite_flow_store import get_sqlite_flow_store
from .permissions.sqlite_permission_store import get_sqlite_permission_store, get_sqlite_snapshot_store
from .sessions import SessionManager, create_session_store
from .storage.sqlite_base import close_sqlite_db_connection, get_sqlite_db_connection
from .upstream.endpoints import upstream_router

# Configure logging based on debug mode setting
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level="DEBUG" if settings.debug_mode else "INFO",
        format='%(asctime)s - %(name)s [%(levelname)s] - %(message)s'
    )

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG if settings.debug_mode else logging.INFO)

SESSION_HEADER = b"x-gateway-session-id"
PROJECT_HEADER = "x-project-id"

# Global instances, created during application startup
gateway_session_manager: Optional[SessionManager] = None
mcp_http_session_manager: Optional[StreamableHTTPSessionManager] = None


@asynccontextmanager
async def gateway_app_lifespan(app_instance: FastAPI):
    """
    Validate configuration, open storage, start the session sweeper and run
    the MCP transport manager for the lifetime of the application.
    """
    global gateway_session_manager, mcp_http_session_manager

    logger.info("Application startup initiated.")
    settings.validate_required_secrets()

    await get_sqlite_db_connection()
    for store_getter in (
        get_sqlite_account_store, get_sqlite_credential_store, get_sqlite_flow_store,
        get_sqlite_permission_store, get_sqlite_snapshot_store, get_sqlite_memory_store,
    ):
        await store_getter()
    logger.info("SQLite stores initialized.")

    registry = get_tool_registry()
    logger.info(f"Operation catalog ready: {len(registry)} operations in categories {registry.categories}.")

    session_store = create_session_store()
    await session_store.initialize()
    gateway_session_manager = SessionManager(
        session_store,
        grace_seconds=settings.session_grace_seconds,
        sweep_interval_seconds=settings.session_sweep_interval_seconds,
        housekeeping=[
            (await get_sqlite_flow_store()).delete_expired,
            (await get_sqlite_credential_store()).delete_expired_connect_states,
        ],
    )
    gateway_session_manager.start_sweeper()

    # A manager can only be run once, so each application run gets its own
    mcp_http_session_manager = StreamableHTTPSessionManager(app=gateway_fastmcp_server._mcp_server)
    try:
        async with mcp_http_session_manager.run():
            logger.info("MCP HTTP session manager running.")
            yield
    finally:
        logger.info("Application shutdown initiated.")
        await gateway_session_manager.stop_sweeper()
        try:
            await session_store.teardown()
        except Exception as e_td:
            logger.error(f"Session store teardown error: {e_td}", exc_info=True)
        await close_sqlite_db_connection()
        gateway_session_manager = None
        mcp_http_session_manager = None
        logger.info("All components torn down.")


class ResponseHandled(StarletteResponse):
    """
    Signals that the MCP endpoint already sent its response through the
    transport manager, so Starlette must not send another one.
    """
    def __init__(self):
        super().__init__(content=b"", media_type="text/plain")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        return


def _unauthenticated_response(error: AuthenticationError) -> JSONResponse:
    resource_metadata = f"{settings.public_base_url.rstrip('/')}/.well-known/oauth-protected-resource"
    return JSONResponse(
        status_code=401,
        content={
            "jsonrpc": "2.0",
            "id": None,
            "error": {"code": -32001, "message": error.message, "data": error.to_dict()},
        },
        headers={"WWW-Authenticate": f'Bearer resource_metadata="{resource_metadata}"'},
    )


class GatewayMCPEndpoint(HTTPEndpoint):
    """
    Authenticates every MCP transport request, binds it to a gateway session
    and hands it to the StreamableHTTPSessionManager.

    Credentials come from `Authorization: Bearer` or the `?token=` query
    parameter. The session is released when the request finishes, which
    starts its grace window once no other connection holds it.
    """

    async def _dispatch_mcp_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = StarletteRequest(scope, receive)
        gateway = await get_auth_gateway()
        try:
            principal = await gateway.authenticate(extract_credential(request))
        except AuthenticationError as e:
            logger.info(f"Rejected MCP connection: {e.message}")
            await _unauthenticated_response(e)(scope, receive, send)
            return

        session_manager = gateway_session_manager
        transport_manager = mcp_http_session_manager
        if session_manager is None or transport_manager is None:
            await JSONResponse(
                {"error": "service_unavailable", "message": "The gateway is still starting."}, status_code=503
            )(scope, receive, send)
            return

        session, resumed = await session_manager.bind(
            principal.user_id, principal.auth_method, principal.credential_fingerprint
        )
        await gateway.on_session_bound(principal, session.session_id)
        logger.debug(
            f"{scope['method']} /mcp for user {principal.user_id}: "
            f"{'resumed' if resumed else 'new'} session {session.session_id}."
        )

        scope_for_mcp = dict(scope)
        state: Dict[str, Any] = dict(scope.get("state") or {})
        state["user_id"] = principal.user_id
        state["session_id"] = session.session_id
        state["project_id"] = request.headers.get(PROJECT_HEADER) or None
        scope_for_mcp["state"] = state

        response_started = False

        async def send_wrapper(message: Dict[str, Any]) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
                headers = [(k, v) for k, v in message.get("headers", []) if k.lower() != SESSION_HEADER]
                headers.append((SESSION_HEADER, session.session_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            with set_http_request(StarletteRequest(scope_for_mcp, receive)):
                await transport_manager.handle_request(scope_for_mcp, receive, send_wrapper)
        except Exception as e:
            logger.error(f"Exception during MCP request processing: {e}", exc_info=True)
            if not response_started:
                await JSONResponse(
                    status_code=500,
                    content={"error": "internal_server_error", "message": "An error occurred while processing the request."},
                )(scope, receive, send)
        finally:
            # Shielded so a cancelled request still releases its connection
            await asyncio.shield(session_manager.release(session.session_id))

    async def get(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()

    async def post(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()

    async def delete(self, req: StarletteRequest) -> ResponseHandled:
        await self._dispatch_mcp_request(self.scope, self.receive, self.send)
        return ResponseHandled()


mcp_starlette_router = StarletteRouter(routes=[
    Route("/mcp", GatewayMCPEndpoint),
    Route("/mcp/{mcp_path:path}", GatewayMCPEndpoint),
])

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug_mode,
    version="0.1.0",
    lifespan=gateway_app_lifespan,
)


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: StarletteRequest, exc: OAuthError):
    """OAuth errors use the RFC 6749 body shape, without FastAPI's `detail` wrapper."""
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)


@app.get("/")
async def root_api():
    return {"message": f"Welcome to {settings.app_name}!"}


@app.get("/health")
async def health_api():
    """Reports SQLite and session store connectivity."""
    store_statuses: Dict[str, str] = {}
    all_healthy = True

    try:
        conn = await get_sqlite_db_connection()
        conn.execute("SELECT 1")
        store_statuses["sqlite_main_db"] = "healthy"
    except Exception as e:
        store_statuses["sqlite_main_db"] = f"unhealthy: {e}"
        all_healthy = False

    if gateway_session_manager is not None:
        try:
            healthy = await gateway_session_manager.store.ping()
            store_statuses["session_store"] = "healthy" if healthy else "unhealthy"
            all_healthy = all_healthy and healthy
        except Exception as e:
            store_statuses["session_store"] = f"unhealthy: {e}"
            all_healthy = False
    else:
        store_statuses["session_store"] = "not started"

    return {
        "status": "healthy" if all_healthy else "degraded",
        "session_backend": settings.session_backend,
        "details": store_statuses,
    }


app.include_router(gateway_auth_router, tags=["Gateway Authentication"])
app.include_router(oauth_router, tags=["OAuth 2.1"])
app.include_router(upstream_router)
app.include_router(memory_router)
app.include_router(invites_admin_router)
app.include_router(users_admin_router)
app.include_router(permissions_admin_router)
app.include_router(snapshots_admin_router)
app.mount(path="/", app=mcp_starlette_router)
