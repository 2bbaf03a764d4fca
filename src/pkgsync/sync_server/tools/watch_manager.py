"""Watch-mode lifecycle: one watcher and one task supervisor per workspace root."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from ..config import SyncServerConfig
from ..models.sync_models import BuildSummary, FileEvent, WatchStartResult
from .artifact_sync import sync_artifacts
from .build_executor import BuildExecutor
from .build_state import SessionRegistry, WorkspaceSession
from .change_mapper import find_owning_package
from .change_source import PackageWatcher
from .pipeline import make_executor, run_pipeline
from .task_supervisor import CancellationToken, TaskSupervisor
from .workspace_registry import WORKSPACE_MANIFEST, discover_packages

logger = logging.getLogger(__name__)

STATUS_STARTED = "started"
STATUS_ALREADY_WATCHING = "already_watching"
STATUS_FAILED = "failed"


@dataclass
class _WatchEntry:
    watcher: PackageWatcher
    supervisor: TaskSupervisor


class WatchManager:
    """Start, stop and report watchers for configured workspace roots."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: SyncServerConfig,
        executor: BuildExecutor | None = None,
        auto_build: bool = True,
    ):
        self.registry = registry
        self.config = config
        self.executor = executor or make_executor(config)
        self.auto_build = auto_build
        self._entries: dict[str, _WatchEntry] = {}

    @property
    def watching_paths(self) -> list[str]:
        return list(self._entries)

    def is_watching(self, root_dir: str | Path) -> bool:
        resolved = Path(root_dir).resolve()
        return any(Path(path).resolve() == resolved for path in self._entries)

    def running_tasks(self) -> list[str]:
        return [path for path, entry in self._entries.items() if entry.supervisor.is_running]

    def supervisor_for(self, root_dir: str) -> TaskSupervisor | None:
        entry = self._entries.get(root_dir)
        return entry.supervisor if entry else None

    def start(self, root_dir: str) -> WatchStartResult:
        """Begin watching one workspace root."""
        if root_dir in self._entries:
            return WatchStartResult(path=root_dir, status=STATUS_ALREADY_WATCHING)

        root = Path(root_dir)
        if not root.exists():
            return WatchStartResult(path=root_dir, status=STATUS_FAILED, error=f"Path does not exist: {root_dir}")
        if not (root / WORKSPACE_MANIFEST).exists():
            return WatchStartResult(
                path=root_dir, status=STATUS_FAILED, error=f"{WORKSPACE_MANIFEST} not found in {root_dir}"
            )

        session = self.registry.get(root)
        packages = discover_packages(root)
        if not packages:
            logger.warning(f"No modules with a src directory found in {root_dir}, check {WORKSPACE_MANIFEST}")
        logger.info(f"Watching {len(packages)} module(s) in {root_dir}")
        for package in packages:
            logger.info(f"   - {package.name}")

        supervisor = TaskSupervisor(lambda path, token: self._run(session, token))

        async def on_change(event: FileEvent) -> None:
            package = find_owning_package(event.path, packages)
            module = package.name if package else "?"
            logger.info(f"[{event.kind}] {module} {event.path}")
            supervisor.execute_task(root)

        watcher = PackageWatcher(
            root,
            [package.source_path for package in packages],
            on_change,
            stability_ms=self.config.watch_stability_ms,
            poll_ms=self.config.watch_poll_ms,
        )
        watcher.start()
        self._entries[root_dir] = _WatchEntry(watcher=watcher, supervisor=supervisor)
        return WatchStartResult(path=root_dir, status=STATUS_STARTED)

    def start_all(self, root_dirs: list[str]) -> list[WatchStartResult]:
        results = []
        for root_dir in root_dirs:
            try:
                results.append(self.start(root_dir))
            except Exception as e:
                logger.exception(f"Failed to start watching {root_dir}")
                results.append(WatchStartResult(path=root_dir, status=STATUS_FAILED, error=str(e)))
        return results

    async def stop_all(self) -> list[str]:
        """Stop every watcher, cancel in-flight runs and return the roots that were stopped."""
        stopped = []
        for root_dir, entry in list(self._entries.items()):
            entry.supervisor.cancel_current_task()
            await entry.watcher.stop()
            await entry.supervisor.wait_idle()
            stopped.append(root_dir)
        self._entries.clear()
        return stopped

    async def _run(self, session: WorkspaceSession, token: CancellationToken) -> BuildSummary | None:
        summary = await run_pipeline(session, self.config, token, self.executor if self.auto_build else None)
        if summary is None or not summary.success or not summary.targets:
            return summary

        await asyncio.sleep(0)
        token.raise_if_cancelled()
        await asyncio.to_thread(
            sync_artifacts, summary.targets, self.config.project_paths, self.config.package_manager
        )
        return summary
