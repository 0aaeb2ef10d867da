# mcp_ledger/mcp_handlers/__init__.py
