# mcp_ledger/cli/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# <project>/mcp_ledger/cli/config.py
project_root = Path(__file__).parent.parent.parent.resolve()

# The CLI reads the same .env as the gateway so ADMIN_API_KEY only lives in one place.
load_dotenv(dotenv_path=project_root / ".env", override=True)

LEDGER_CLI_API_BASE_URL = os.getenv("LEDGER_CLI_API_BASE_URL", "http://127.0.0.1:8000")
LEDGER_CLI_ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")
LEDGER_CLI_TIMEOUT_SECONDS = float(os.getenv("LEDGER_CLI_TIMEOUT_SECONDS", "30"))
