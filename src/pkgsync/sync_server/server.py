"""Package Sync MCP Server - build workspace packages and sync them into consumer projects."""

import logging
import sys

from fastmcp import FastMCP

from .config import get_config
from .tools import register_sync_tools

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

# Initialize the Sync MCP server
mcp = FastMCP(
    name="Package Sync Server",
    version=__version__,
    instructions="""
        Sync server keeps consumer projects up to date with local pnpm workspace packages:

        Detection Tools:
        - detect_changed_modules: Packages with uncommitted, staged or untracked files
        - get_build_targets: Changed packages plus their dependents, in build order

        Build & Sync Tools:
        - build_modules: Build the targets computed by get_build_targets
        - sync_modified_code: Detect, build and copy dist/es/lib into consumer node_modules
        - sync_specified_modules: Build and sync packages by name

        Watch Tools:
        - start_watch_modules / stop_watch_modules / get_watch_status

        Configuration Tools:
        - get_configuration / check_configuration

        Best Practices:
        - Run check_configuration once after setting MODULE_PATHS and PROJECT_PATHS
        - Use sync_modified_code after editing library code instead of building by hand
        - Use watch mode for longer editing sessions
    """,
)

# Register all sync tools
service = register_sync_tools(mcp)


def main():
    """Entry point for the sync server."""
    # stdout carries the MCP protocol
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    config = get_config()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.log_level))

    logger.info(
        f"Starting sync server: {len(config.module_paths)} module path(s), "
        f"{len(config.project_paths)} project path(s)"
    )
    mcp.run()


if __name__ == "__main__":
    main()
