# mcp_ledger/core/global_registry.py
from pathlib import Path
from typing import Optional

from .registry import RegistryBuilder, ToolRegistry

# Populated by the decorators in tool_modules/*.py as they are imported
REGISTRY_BUILDER = RegistryBuilder()

TOOL_MODULES_DIR = Path(__file__).resolve().parent.parent / "tool_modules"

_TOOL_REGISTRY: Optional[ToolRegistry] = None


def get_tool_registry() -> ToolRegistry:
    """Load every tool module once and return the frozen registry."""
    global _TOOL_REGISTRY
    if _TOOL_REGISTRY is None:
        from ..tool_loader import load_tools_from_directory
        load_tools_from_directory(TOOL_MODULES_DIR)
        _TOOL_REGISTRY = REGISTRY_BUILDER.build()
    return _TOOL_REGISTRY
