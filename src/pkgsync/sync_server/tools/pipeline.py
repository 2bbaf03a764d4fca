"""Detection → closure → ordering → build pipeline for a workspace session."""

import asyncio
import logging

from ..config import SyncServerConfig
from ..models.sync_models import BuildReason, BuildSummary, BuildTarget, ChangedModule
from .build_executor import BuildExecutor
from .build_state import WorkspaceSession
from .change_mapper import map_changes_to_modules
from .change_source import get_changed_files
from .dependency_graph import build_dependency_map, find_dependents, topological_sort
from .task_supervisor import CancellationToken
from .workspace_registry import discover_packages

logger = logging.getLogger(__name__)


def detect_changed_modules(session: WorkspaceSession, git_timeout: int = 30) -> list[ChangedModule]:
    """Discover packages, list git changes and cache the changed modules of the session."""
    root = session.root_path
    session.packages = discover_packages(root)
    if not session.packages:
        logger.warning(f"No workspace packages found in {root}")
        session.changed_modules = []
        return []

    changed_files = get_changed_files(root, timeout=git_timeout)
    if not changed_files:
        logger.info(f"No file changes detected in {root}")
        session.changed_modules = []
        return []

    session.changed_modules = map_changes_to_modules(changed_files, session.packages, root)
    logger.info(f"Detected {len(session.changed_modules)} changed module(s) in {root}")
    for module in session.changed_modules:
        logger.info(f"   - {module.module_name} ({module.module_path})")
    return session.changed_modules


def _changed_only(changed: list[ChangedModule]) -> list[BuildTarget]:
    return [
        BuildTarget(module_name=m.module_name, module_path=m.module_path, reason=BuildReason.CHANGED)
        for m in changed
    ]


def compute_build_targets(session: WorkspaceSession, build_script: str = "build") -> list[BuildTarget]:
    """Expand the session's changed modules into an ordered build list and mark the session ready.

    The session drops its previous targets and is NOT_READY until the new
    list is complete. Without dependency information only the changed
    modules are built.
    """
    session.clear_targets()
    session.readiness.mark_building()

    changed = session.changed_modules
    if not changed:
        logger.info(f"No changed modules in {session.root_path}, nothing to build")
        targets: list[BuildTarget] = []
    else:
        try:
            session.dependency_map = build_dependency_map(session.root_path, build_script)
            if not session.dependency_map:
                logger.warning("No package dependency information found, building changed modules only")
                targets = _changed_only(changed)
            else:
                targets = topological_sort(find_dependents(changed, session.dependency_map), session.dependency_map)
        except Exception:
            logger.exception(f"Dependency analysis failed for {session.root_path}, building changed modules only")
            targets = _changed_only(changed)

    session.build_targets = targets
    if targets:
        logger.info(f"{len(targets)} module(s) to build (including dependents):")
        for index, target in enumerate(targets, start=1):
            logger.info(f"   {index}. {target.module_name} - {target.describe_reason()}")

    session.readiness.mark_ready()
    return targets


def execute_build(
    session: WorkspaceSession, executor: BuildExecutor, token: CancellationToken | None = None
) -> BuildSummary:
    """Build the cached targets of a session, only when its target list is ready.

    The target list is copied before the build starts and returned on the
    summary, so callers sync exactly what was built even if the session is
    recomputed meanwhile.
    """
    if not session.readiness.is_ready:
        logger.warning(f"Build targets of {session.root_path} are not ready, skipping build")
        return BuildSummary.skipped("Build targets are still being computed or nothing changed")
    targets = list(session.build_targets)
    summary = executor.build_targets(targets, token)
    summary.targets = targets
    return summary


def make_executor(config: SyncServerConfig) -> BuildExecutor:
    return BuildExecutor(
        package_manager=config.package_manager,
        build_script=config.build_script,
        timeout=config.build_timeout,
        inherit_output=config.inherit_build_output,
    )


async def run_pipeline(
    session: WorkspaceSession,
    config: SyncServerConfig,
    token: CancellationToken,
    executor: BuildExecutor | None = None,
) -> BuildSummary | None:
    """One cancellable run: detect, compute targets, then build when an executor is given.

    Raises:
        PipelineAborted: If token is cancelled at a phase boundary
    """
    detect_changed_modules(session, config.git_timeout)
    await asyncio.sleep(0)
    token.raise_if_cancelled()

    compute_build_targets(session, config.build_script)
    await asyncio.sleep(0)
    token.raise_if_cancelled()

    if executor is None:
        return None
    return await asyncio.to_thread(execute_build, session, executor, token)
