# mcp_ledger/tool_loader.py
import importlib.util
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def load_tools_from_directory(directory_path: Path) -> int:
    """
    Import every tool module in `directory_path` so its @operation decorators
    register with the global REGISTRY_BUILDER.

    Modules already present in sys.modules are not re-executed; re-running a
    module would register its operations a second time.

    Returns:
        Number of modules imported by this call
    """
    logger.info(f"Initiating tool loading from directory: {directory_path.resolve()}")

    if not directory_path.is_dir():
        logger.warning(f"Tool modules directory '{directory_path}' not found or not a directory. Skipping tool loading.")
        return 0

    found_files_count = 0
    loaded_modules_count = 0

    for file_path in sorted(directory_path.glob("*.py")):
        if file_path.name == "__init__.py":
            continue
        found_files_count += 1

        module_spec_name = f"mcp_ledger.tool_modules.{file_path.stem}"
        if module_spec_name in sys.modules:
            logger.debug(f"Module '{module_spec_name}' already imported. Skipping.")
            continue

        logger.info(f"Importing tool module '{module_spec_name}' from '{file_path}'")
        spec = importlib.util.spec_from_file_location(module_spec_name, str(file_path))
        if not spec or not spec.loader:
            logger.error(f"Could not create module spec or loader for '{file_path}'. Skipping.")
            continue

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_spec_name] = module
        try:
            # Executing the module triggers registration via decorators
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_spec_name, None)
            logger.error(f"Error importing tool module '{module_spec_name}'", exc_info=True)
            raise
        loaded_modules_count += 1

    if found_files_count == 0:
        logger.warning(f"No Python files found in tool modules directory: {directory_path.resolve()}")

    logger.info(
        f"Tool loading finished. Found {found_files_count} modules, imported {loaded_modules_count}."
    )
    return loaded_modules_count
