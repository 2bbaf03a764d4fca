"""Implementations behind the sync server's MCP tools."""

import asyncio
import logging
import re
from pathlib import Path

from ...utils.log_capture import LogCapture
from ..config import SyncServerConfig, get_config
from ..models.sync_models import (
    BuildModulesResponse,
    BuildReason,
    BuildSummary,
    BuildTarget,
    BuildTargetsResponse,
    CheckConfigurationResponse,
    DependencyRecord,
    DetectChangedModulesResponse,
    GetConfigurationResponse,
    PathStatus,
    WatchModulesResponse,
    WatchStatusResponse,
)
from .artifact_sync import sync_artifacts
from .build_state import SessionRegistry, WorkspaceSession
from .dependency_graph import build_dependency_map, topological_sort
from .pipeline import compute_build_targets, detect_changed_modules, execute_build, make_executor, run_pipeline
from .task_supervisor import CancellationToken
from .watch_manager import STATUS_FAILED, WatchManager
from .workspace_registry import WORKSPACE_MANIFEST

logger = logging.getLogger(__name__)

IN_PROGRESS_MESSAGE = "Another build or sync operation is in progress, try again when it finishes"

SCOPED_NAME_PATTERN = re.compile(r"@[\w.-]+/[\w.-]+")
NAME_TOKEN_PATTERN = re.compile(r"[\w.@/-]+")


def extract_module_names(text: str, known_names: list[str] | tuple[str, ...] = ()) -> list[str]:
    """Pull package names out of free text.

    Scoped names (@scope/name) are taken as written. When none are present,
    plain words that match a known package name are used.
    """
    scoped = SCOPED_NAME_PATTERN.findall(text)
    if scoped:
        return list(dict.fromkeys(name.rstrip(".") for name in scoped))

    known = set(known_names)
    words = (token.strip(".") for token in NAME_TOKEN_PATTERN.findall(text))
    return list(dict.fromkeys(word for word in words if word in known))


def _path_status(path: str, check_workspace: bool = False) -> PathStatus:
    target = Path(path)
    status = PathStatus(path=path, exists=target.exists(), is_directory=target.is_dir())
    if check_workspace:
        status.has_workspace_manifest = (target / WORKSPACE_MANIFEST).is_file()
    return status


def _merge_summaries(summaries: list[BuildSummary]) -> BuildModulesResponse:
    response = BuildModulesResponse(success=True, message="")
    for summary in summaries:
        response.total += summary.total
        response.succeeded += summary.succeeded
        response.failed += summary.failed
        response.results.extend(summary.results)
    response.success = response.failed == 0
    if response.total == 0:
        response.message = "No modules to build"
    elif response.success:
        response.message = f"All {response.total} module(s) built"
    else:
        response.message = f"{response.failed} of {response.total} module(s) failed to build"
    return response


class SyncService:
    """Session registry, watch manager and operation lock shared by all tools of one server."""

    def __init__(self, config: SyncServerConfig | None = None, registry: SessionRegistry | None = None):
        self._config = config
        self.registry = registry or SessionRegistry()
        self._lock = asyncio.Lock()
        self._watch_manager: WatchManager | None = None

    @property
    def config(self) -> SyncServerConfig:
        return self._config or get_config()

    @property
    def watch_manager(self) -> WatchManager:
        if self._watch_manager is None:
            self._watch_manager = WatchManager(self.registry, self.config)
        return self._watch_manager

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def _roots(self, module_path: str | None = None) -> list[str]:
        roots = [module_path] if module_path else list(self.config.module_paths)
        existing = []
        for root in roots:
            if Path(root).is_dir():
                existing.append(root)
            else:
                logger.warning(f"Module path does not exist: {root}")
        return existing

    # Configuration

    def get_configuration(self) -> GetConfigurationResponse:
        config = self.config
        return GetConfigurationResponse(
            module_paths=list(config.module_paths),
            project_paths=list(config.project_paths),
            package_manager=config.package_manager,
            build_script=config.build_script,
            build_timeout=config.build_timeout,
        )

    def check_configuration(self) -> CheckConfigurationResponse:
        config = self.config
        module_paths = [_path_status(path, check_workspace=True) for path in config.module_paths]
        project_paths = [_path_status(path) for path in config.project_paths]
        valid = (
            bool(module_paths)
            and all(status.is_directory and status.has_workspace_manifest for status in module_paths)
            and all(status.is_directory for status in project_paths)
        )
        return CheckConfigurationResponse(module_paths=module_paths, project_paths=project_paths, valid=valid)

    # Guards

    def _rejected(self) -> BuildModulesResponse:
        logger.warning(IN_PROGRESS_MESSAGE)
        return BuildModulesResponse(
            success=False, message=IN_PROGRESS_MESSAGE, status="rejected", error_code="OPERATION_IN_PROGRESS"
        )

    def _watched(self, roots: list[str]) -> list[str]:
        """Roots whose sessions are owned by an active watcher."""
        if self._watch_manager is None:
            return []
        return [root for root in roots if self._watch_manager.is_watching(root)]

    def _watch_active_message(self, watched: list[str]) -> str:
        message = f"Watch mode is active for {', '.join(watched)}, call stop_watch_modules first"
        logger.warning(message)
        return message

    # Detection

    async def detect_changed_modules(self, module_path: str | None = None) -> DetectChangedModulesResponse:
        if self.busy:
            logger.warning(IN_PROGRESS_MESSAGE)
            return DetectChangedModulesResponse(
                success=False, modules={}, total=0, message=IN_PROGRESS_MESSAGE, error_code="OPERATION_IN_PROGRESS"
            )

        async with self._lock:
            with LogCapture() as capture:
                try:
                    roots = self._roots(module_path)
                    watched = self._watched(roots)
                    if watched:
                        return DetectChangedModulesResponse(
                            success=False,
                            modules={},
                            total=0,
                            message=self._watch_active_message(watched),
                            error_code="WATCH_ACTIVE",
                        )

                    modules: dict[str, list[dict[str, str]]] = {}
                    for root in roots:
                        session = self.registry.get(root)
                        changed = detect_changed_modules(session, self.config.git_timeout)
                        modules[root] = [
                            {"module_name": m.module_name, "module_path": str(m.module_path)} for m in changed
                        ]
                    total = sum(len(items) for items in modules.values())
                    return DetectChangedModulesResponse(
                        success=True, modules=modules, total=total, message=f"Detected {total} changed module(s)"
                    )
                except Exception as e:
                    logger.exception("Change detection failed")
                    return DetectChangedModulesResponse(
                        success=False,
                        modules={},
                        total=0,
                        message=f"Change detection failed: {e}",
                        error_code="OPERATION_FAILED",
                        logs=capture.lines,
                    )

    async def get_build_targets(self, module_path: str | None = None) -> BuildTargetsResponse:
        if self.busy:
            logger.warning(IN_PROGRESS_MESSAGE)
            return BuildTargetsResponse(
                success=False,
                targets={},
                total=0,
                ready=False,
                message=IN_PROGRESS_MESSAGE,
                error_code="OPERATION_IN_PROGRESS",
            )

        async with self._lock:
            with LogCapture() as capture:
                try:
                    roots = self._roots(module_path)
                    watched = self._watched(roots)
                    if watched:
                        return BuildTargetsResponse(
                            success=False,
                            targets={},
                            total=0,
                            ready=False,
                            message=self._watch_active_message(watched),
                            error_code="WATCH_ACTIVE",
                        )

                    targets: dict[str, list[dict]] = {}
                    sessions: list[WorkspaceSession] = []
                    for root in roots:
                        session = self.registry.get(root)
                        detect_changed_modules(session, self.config.git_timeout)
                        compute_build_targets(session, self.config.build_script)
                        targets[root] = [target.to_dict() for target in session.build_targets]
                        sessions.append(session)
                    total = sum(len(items) for items in targets.values())
                    return BuildTargetsResponse(
                        success=True,
                        targets=targets,
                        total=total,
                        ready=bool(sessions) and all(session.readiness.is_ready for session in sessions),
                        message=f"{total} module(s) to build",
                    )
                except Exception as e:
                    logger.exception("Build target computation failed")
                    return BuildTargetsResponse(
                        success=False,
                        targets={},
                        total=0,
                        ready=False,
                        message=f"Build target computation failed: {e}",
                        error_code="OPERATION_FAILED",
                        logs=capture.lines,
                    )

    # Build and sync

    async def build_modules(self) -> BuildModulesResponse:
        """Build the cached, ready targets of every configured workspace."""
        if self.busy:
            return self._rejected()

        async with self._lock:
            with LogCapture() as capture:
                try:
                    roots = self._roots()
                    watched = self._watched(roots)
                    if watched:
                        return BuildModulesResponse(
                            success=False,
                            message=self._watch_active_message(watched),
                            status="rejected",
                            error_code="WATCH_ACTIVE",
                        )

                    executor = make_executor(self.config)
                    summaries = []
                    for root in roots:
                        session = self.registry.find(root)
                        if session is None or not session.readiness.is_ready:
                            logger.info(f"No ready build targets for {root}")
                            continue
                        summaries.append(await asyncio.to_thread(execute_build, session, executor))

                    if not summaries:
                        return BuildModulesResponse(
                            success=False,
                            message="Build targets are not ready, call get_build_targets first",
                            status="skipped",
                            error_code="NOT_READY",
                            logs=capture.lines,
                        )

                    response = _merge_summaries(summaries)
                except Exception as e:
                    logger.exception("Build failed")
                    return BuildModulesResponse(
                        success=False, message=f"Build failed: {e}", error_code="OPERATION_FAILED", logs=capture.lines
                    )

                if not response.success:
                    response.logs = capture.lines
                return response

    async def sync_modified_code(self) -> BuildModulesResponse:
        """Detect, build and sync every configured workspace in one go."""
        if self.busy:
            return self._rejected()

        async with self._lock:
            with LogCapture() as capture:
                try:
                    config = self.config
                    roots = self._roots()
                    watched = self._watched(roots)
                    if watched:
                        return BuildModulesResponse(
                            success=False,
                            message=self._watch_active_message(watched),
                            status="rejected",
                            error_code="WATCH_ACTIVE",
                        )

                    executor = make_executor(config)
                    summaries = []
                    synced = 0
                    sync_errors: list[str] = []
                    for root in roots:
                        session = self.registry.get(root)
                        summary = await run_pipeline(session, config, CancellationToken(), executor)
                        if summary is None:
                            continue
                        summaries.append(summary)
                        if summary.success and summary.targets:
                            sync = await asyncio.to_thread(
                                sync_artifacts, summary.targets, config.project_paths, config.package_manager
                            )
                            synced += sync.synced
                            sync_errors.extend(sync.errors)

                    response = _merge_summaries(summaries)
                    response.synced = synced
                    if sync_errors:
                        response.success = False
                        response.error_code = "SYNC_FAILED"
                        response.message = f"{response.message}; {len(sync_errors)} sync error(s)"
                    elif response.success:
                        response.message = f"{response.message}, {synced} module(s) synced"
                except Exception as e:
                    logger.exception("Sync of modified code failed")
                    return BuildModulesResponse(
                        success=False, message=f"Sync failed: {e}", error_code="OPERATION_FAILED", logs=capture.lines
                    )

                if not response.success:
                    response.logs = capture.lines
                return response

    def _dependency_maps(self) -> dict[str, dict[str, DependencyRecord]]:
        return {root: build_dependency_map(root, self.config.build_script) for root in self._roots()}

    def _resolve_named_targets(
        self, module_names: list[str], dependency_maps: dict[str, dict[str, DependencyRecord]]
    ) -> tuple[list[BuildTarget], list[str]]:
        """Look up named packages across every workspace and order them per workspace."""
        remaining = list(dict.fromkeys(module_names))
        ordered: list[BuildTarget] = []
        for dependency_map in dependency_maps.values():
            found = [name for name in remaining if name in dependency_map]
            if not found:
                continue
            targets = [
                BuildTarget(module_name=name, module_path=dependency_map[name].root_path, reason=BuildReason.CHANGED)
                for name in found
            ]
            ordered.extend(topological_sort(targets, dependency_map))
            remaining = [name for name in remaining if name not in found]
        return ordered, remaining

    def _list_modules(self) -> BuildModulesResponse:
        with LogCapture() as capture:
            try:
                available = {root: sorted(dependency_map) for root, dependency_map in self._dependency_maps().items()}
            except Exception as e:
                logger.exception("Listing modules failed")
                return BuildModulesResponse(
                    success=False,
                    message=f"Listing modules failed: {e}",
                    error_code="OPERATION_FAILED",
                    logs=capture.lines,
                )
            total = sum(len(names) for names in available.values())
            for root, names in available.items():
                logger.info(f"{root}: {', '.join(names) if names else 'no buildable modules'}")
            return BuildModulesResponse(
                success=True,
                message=f"No module names given, {total} buildable module(s) available",
                status="listed",
                available_modules=available,
                logs=capture.lines,
            )

    async def sync_specified_modules(
        self, module_names: list[str] | None = None, user_input: str | None = None
    ) -> BuildModulesResponse:
        """Build the named packages in dependency order and sync their output.

        Without names, module names are taken from user_input. With neither,
        the buildable modules of every workspace are listed instead.
        """
        if not module_names and not (user_input and user_input.strip()):
            return self._list_modules()
        if self.busy:
            return self._rejected()

        async with self._lock:
            with LogCapture() as capture:
                try:
                    config = self.config
                    dependency_maps = self._dependency_maps()
                    if not module_names:
                        known = [name for dependency_map in dependency_maps.values() for name in dependency_map]
                        module_names = extract_module_names(user_input or "", known)
                        if not module_names:
                            return BuildModulesResponse(
                                success=False,
                                message=f"Unable to extract module names from: {user_input}",
                                error_code="INVALID_INPUT",
                                logs=capture.lines,
                            )
                        logger.info(f"Modules requested: {', '.join(module_names)}")

                    targets, missing = self._resolve_named_targets(module_names, dependency_maps)
                    if missing:
                        logger.warning(f"Modules not found in any workspace: {', '.join(missing)}")
                    if not targets:
                        return BuildModulesResponse(
                            success=False,
                            message=f"None of the requested modules were found: {', '.join(module_names)}",
                            error_code="MODULE_NOT_FOUND",
                            logs=capture.lines,
                        )

                    executor = make_executor(config)
                    summary = await asyncio.to_thread(executor.build_targets, targets)
                    response = _merge_summaries([summary])
                    response.synced = 0
                    if summary.success:
                        sync = await asyncio.to_thread(
                            sync_artifacts, targets, config.project_paths, config.package_manager
                        )
                        response.synced = sync.synced
                        if sync.errors:
                            response.success = False
                            response.error_code = "SYNC_FAILED"
                            response.message = f"{response.message}; {len(sync.errors)} sync error(s)"
                        else:
                            response.message = f"{response.message}, {sync.synced} module(s) synced"
                    if missing:
                        response.message = f"{response.message} (not found: {', '.join(missing)})"
                except Exception as e:
                    logger.exception("Sync of specified modules failed")
                    return BuildModulesResponse(
                        success=False, message=f"Sync failed: {e}", error_code="OPERATION_FAILED", logs=capture.lines
                    )

                if not response.success:
                    response.logs = capture.lines
                return response

    # Watch mode

    def start_watch_modules(self) -> WatchModulesResponse:
        module_paths = list(self.config.module_paths)
        if not module_paths:
            return WatchModulesResponse(
                success=False, message="No module paths configured", total_paths=0, active_watchers=0
            )

        manager = self.watch_manager
        results = manager.start_all(module_paths)
        failed = [result for result in results if result.status == STATUS_FAILED]
        active = len(manager.watching_paths)
        return WatchModulesResponse(
            success=not failed,
            message=f"Watching {active} of {len(module_paths)} module path(s)",
            total_paths=len(module_paths),
            active_watchers=active,
            results=results,
        )

    async def stop_watch_modules(self) -> WatchModulesResponse:
        stopped = await self.watch_manager.stop_all() if self._watch_manager else []
        return WatchModulesResponse(
            success=True,
            message=f"Stopped {len(stopped)} watcher(s)" if stopped else "No active watchers",
            total_paths=len(self.config.module_paths),
            active_watchers=0,
            stopped_paths=stopped,
        )

    def get_watch_status(self) -> WatchStatusResponse:
        module_paths = list(self.config.module_paths)
        watching = self._watch_manager.watching_paths if self._watch_manager else []
        running = self._watch_manager.running_tasks() if self._watch_manager else []
        return WatchStatusResponse(
            total_configured_paths=len(module_paths),
            active_watchers=len(watching),
            watching_paths=watching,
            not_watching_paths=[path for path in module_paths if path not in watching],
            running_tasks=running,
        )
