import uvicorn
from dotenv import load_dotenv
import os
from pathlib import Path
import logging

# Configure logging before any application imports to ensure visibility
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s RUN_DEV.PY - [%(levelname)s] - %(message)s'
)
logger = logging.getLogger("run_dev_script")

if __name__ == "__main__":
    project_root = Path(__file__).parent.resolve()
    dotenv_path_explicit = project_root / ".env"

    logger.info(f"Current working directory: {os.getcwd()}")
    logger.info(f"Expected .env path for load_dotenv: {dotenv_path_explicit}")

    if dotenv_path_explicit.exists():
        # Override existing OS environment variables with .env values
        load_dotenv(dotenv_path=dotenv_path_explicit, override=True)
        logger.info(f".env file loaded from {dotenv_path_explicit}")
    else:
        logger.warning(f".env file NOT FOUND at: {dotenv_path_explicit}. "
                       "Will rely on OS environment variables or pydantic-settings defaults.")

    # Secrets are only reported as present or absent
    for secret_name in ("XERO_CLIENT_ID", "XERO_CLIENT_SECRET", "BEARER_SIGNING_SECRET",
                        "OAUTH_CLIENT_ID", "OAUTH_CLIENT_SECRET", "ADMIN_API_KEY"):
        logger.info(f"{secret_name}: {'********' if os.getenv(secret_name) else 'None'}")
    logger.info(f"DEBUG_MODE: {os.getenv('DEBUG_MODE')}")
    logger.info(f"SESSION_BACKEND: {os.getenv('SESSION_BACKEND')}")
    logger.info(f"FASTMCP_LOG_LEVEL: {os.getenv('FASTMCP_LOG_LEVEL')}")

    host = os.getenv("DEV_SERVER_HOST", "127.0.0.1")
    port = int(os.getenv("DEV_SERVER_PORT", "8000"))
    uvicorn_log_level = os.getenv("DEV_SERVER_LOG_LEVEL", "info").lower()

    debug_mode_env_val = os.getenv("DEBUG_MODE", "False").lower()
    debug_mode_bool = debug_mode_env_val in ["true", "1", "yes", "on", "t"]
    reload_env_val = os.getenv("DEV_SERVER_RELOAD", str(debug_mode_bool)).lower()
    reload_bool = reload_env_val in ["true", "1", "yes", "on", "t"]

    logger.info(f"Starting Uvicorn server on {host}:{port} (log level {uvicorn_log_level}, reload={reload_bool})")

    uvicorn.run(
        "mcp_ledger.main:app",
        host=host,
        port=port,
        log_level=uvicorn_log_level,
        reload=reload_bool
    )
