"""Sync server tools implementations."""

from ...utils.json_params import json_convert
from ..models.sync_models import (
    BuildModulesResponse,
    BuildTargetsResponse,
    CheckConfigurationResponse,
    DetectChangedModulesResponse,
    GetConfigurationResponse,
    WatchModulesResponse,
    WatchStatusResponse,
)
from .sync_operations import SyncService


def register_sync_tools(mcp, service: SyncService | None = None) -> SyncService:
    """Register sync tools with the MCP server."""
    service = service or SyncService()

    @mcp.tool
    async def get_configuration() -> GetConfigurationResponse:  # noqa: F841
        """Show the workspace roots, consumer projects and build settings this server uses.

        Use this tool when:
        - Before syncing, to confirm which monorepos and projects are configured
        - When a sync did nothing and you suspect a missing MODULE_PATHS or PROJECT_PATHS entry

        Example:
            get_configuration()
            → {"module_paths": ["/work/ui-kit"], "project_paths": ["/work/web-app"],
               "package_manager": "pnpm", "build_script": "build", "build_timeout": 600}
        """
        return service.get_configuration()

    @mcp.tool
    async def check_configuration() -> CheckConfigurationResponse:  # noqa: F841
        """Check that every configured path exists and every module path is a pnpm workspace.

        Use this tool when:
        - Setting up the server for the first time
        - When detection or watch mode reports missing paths

        Example:
            check_configuration()
            → {"module_paths": [{"path": "/work/ui-kit", "exists": true, "is_directory": true,
               "has_workspace_manifest": true}], "project_paths": [...], "valid": true}
        """
        return service.check_configuration()

    @mcp.tool
    async def detect_changed_modules(module_path: str | None = None) -> DetectChangedModulesResponse:  # noqa: F841
        """List workspace packages with uncommitted, staged or untracked files.

        Use this tool when:
        - You want to know which packages your edits touched before building
        - Checking whether there is anything to sync at all

        Args:
            module_path: One workspace root to inspect (default: all configured module paths)

        Example:
            detect_changed_modules()
            → {"success": true, "modules": {"/work/ui-kit": [{"module_name": "@kit/button",
               "module_path": "/work/ui-kit/packages/button"}]}, "total": 1}
        """
        return await service.detect_changed_modules(module_path)

    @mcp.tool
    async def get_build_targets(module_path: str | None = None) -> BuildTargetsResponse:  # noqa: F841
        """Compute the ordered build list: changed packages plus every package that depends on them.

        Use this tool when:
        - Before build_modules, which only builds targets computed here
        - To see why a package will be rebuilt (reason "changed" or "dependent")

        Args:
            module_path: One workspace root to inspect (default: all configured module paths)

        Example:
            get_build_targets()
            → {"success": true, "targets": {"/work/ui-kit": [
                  {"module_name": "@kit/tokens", "reason": "changed", ...},
                  {"module_name": "@kit/button", "reason": "dependent", "depended_by": ["@kit/tokens"], ...}]},
               "total": 2, "ready": true}

        Note: Dependencies are always listed before the packages that use them.
        Rejected with error_code WATCH_ACTIVE while watch mode owns the workspace.
        """
        return await service.get_build_targets(module_path)

    @mcp.tool
    async def build_modules() -> BuildModulesResponse:  # noqa: F841
        """Build the targets computed by the last get_build_targets call.

        Use this tool when:
        - After get_build_targets, to run each package's build script in order
        - When you want to build without copying output into consumer projects

        Example:
            build_modules()
            → {"success": true, "message": "All 2 module(s) built", "total": 2, "succeeded": 2, "failed": 0}

        Note: Returns status "skipped" when targets were never computed. A second build
        started while one is running is rejected with error_code OPERATION_IN_PROGRESS.
        """
        return await service.build_modules()

    @mcp.tool
    async def sync_modified_code() -> BuildModulesResponse:  # noqa: F841
        """Detect changed packages, build them with their dependents, and copy output into consumer projects.

        Use this tool when:
        - After editing library code that a consumer project should pick up
        - Replaces: pnpm run build in each package followed by manual copies into node_modules

        Example:
            sync_modified_code()
            → {"success": true, "message": "All 2 module(s) built, 2 module(s) synced", "synced": 2, ...}

        Note: Output directories dist, es and lib are copied into each project's pnpm store entry.
        On failure the response includes the log lines of this call.
        """
        return await service.sync_modified_code()

    @mcp.tool
    @json_convert
    async def sync_specified_modules(  # noqa: F841
        module_names: str | list[str] | None = None, user_input: str | None = None
    ) -> BuildModulesResponse:
        """Build the named packages in dependency order and copy their output into consumer projects.

        Use this tool when:
        - You need a package rebuilt and synced regardless of git status
        - A previous sync failed for only some packages
        - You are not sure of the exact names (call without arguments to list them)

        Args:
            module_names: Package names as declared in package.json (list, JSON array or comma-separated string)
            user_input: Free text to pick package names from when module_names is empty

        Example:
            sync_specified_modules(["@kit/button", "@kit/tokens"])
            → {"success": true, "message": "All 2 module(s) built, 2 module(s) synced", ...}
            # @kit/tokens is built first because @kit/button depends on it

            sync_specified_modules()
            → {"success": true, "status": "listed", "available_modules": {"/work/ui-kit": ["@kit/button", ...]}}
        """
        return await service.sync_specified_modules(module_names, user_input)

    @mcp.tool
    async def start_watch_modules() -> WatchModulesResponse:  # noqa: F841
        """Watch the src directories of every workspace package and rebuild and sync on change.

        Use this tool when:
        - Working on library code for a while and wanting consumer projects kept up to date

        Example:
            start_watch_modules()
            → {"success": true, "message": "Watching 1 of 1 module path(s)", "active_watchers": 1,
               "results": [{"path": "/work/ui-kit", "status": "started"}]}

        Note: A change arriving during a rebuild supersedes it; only the newest change set is built.
        """
        return service.start_watch_modules()

    @mcp.tool
    async def stop_watch_modules() -> WatchModulesResponse:  # noqa: F841
        """Stop every watcher started by start_watch_modules.

        Example:
            stop_watch_modules()
            → {"success": true, "message": "Stopped 1 watcher(s)", "stopped_paths": ["/work/ui-kit"]}
        """
        return await service.stop_watch_modules()

    @mcp.tool
    async def get_watch_status() -> WatchStatusResponse:  # noqa: F841
        """Show which module paths are being watched and which have a rebuild running."""
        return service.get_watch_status()

    return service
