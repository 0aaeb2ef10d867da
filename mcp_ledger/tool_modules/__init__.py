# mcp_ledger/tool_modules/__init__.py
# Operation modules are imported by tool_loader.load_tools_from_directory, not from here.
