# mcp_ledger/cli/__init__.py
