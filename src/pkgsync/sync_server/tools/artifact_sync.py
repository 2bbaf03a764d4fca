"""Copy build output of workspace packages into consumer projects' node_modules."""

import logging
import shutil
import subprocess
from pathlib import Path

from ..models.sync_models import BuildTarget, SyncSummary

logger = logging.getLogger(__name__)

BUILD_OUTPUT_DIRS = ("dist", "es", "lib")
NODE_MODULES = "node_modules"
PNPM_STORE = ".pnpm"


def find_pnpm_module_path(node_modules: str | Path, module_name: str) -> Path | None:
    """Locate an installed package inside a pnpm virtual store.

    "@scope/name" is stored under `.pnpm/@scope+name@<version>/node_modules/@scope/name`.
    """
    store = Path(node_modules) / PNPM_STORE
    if not store.is_dir():
        logger.info(f"No pnpm store at {store}")
        return None

    name_parts = module_name.split("/")
    prefix = "+".join(name_parts)
    # The version separator keeps "foo" from matching "foo-bar@1.0.0"
    candidates = sorted(
        entry for entry in store.iterdir() if entry.is_dir() and entry.name.startswith(f"{prefix}@")
    )
    if not candidates:
        logger.info(f"No pnpm store entry for {module_name} in {store}")
        return None

    target = candidates[0] / NODE_MODULES
    for part in name_parts:
        target = target / part
    if not target.is_dir():
        logger.info(f"Expected package directory missing: {target}")
        return None
    return target


def ensure_project_dependencies(project_path: str | Path, package_manager: str = "pnpm", timeout: int = 600) -> bool:
    """Install a consumer project's dependencies when its node_modules is missing or empty."""
    node_modules = Path(project_path) / NODE_MODULES
    if node_modules.is_dir() and any(node_modules.iterdir()):
        return True

    logger.info(f"Installing dependencies in {project_path}")
    try:
        result = subprocess.run(  # noqa: S603 # Safe: package manager comes from server config
            [package_manager, "install"],
            cwd=str(project_path),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"Dependency install failed in {project_path}: {e}")
        return False

    if result.returncode != 0:
        logger.error(f"Dependency install failed in {project_path}: {result.stderr.strip()}")
        return False
    return True


def copy_build_output(module_path: Path, destination: Path, output_dirs=BUILD_OUTPUT_DIRS) -> tuple[int, list[str]]:
    """Replace each existing output directory of module_path inside destination.

    Returns:
        Number of directories copied and error messages for the ones that failed
    """
    copied = 0
    errors: list[str] = []
    for dir_name in output_dirs:
        source = module_path / dir_name
        if not source.is_dir():
            continue
        dest = destination / dir_name
        try:
            if dest.exists():
                shutil.rmtree(dest)
            shutil.copytree(source, dest)
            copied += 1
        except OSError as e:
            errors.append(f"Failed to copy {source} to {dest}: {e}")
            logger.error(errors[-1])
    return copied, errors


def sync_artifacts(
    targets: list[BuildTarget],
    project_paths: list[str],
    package_manager: str = "pnpm",
    install_missing: bool = True,
) -> SyncSummary:
    """Copy every target's build output into every consumer project that has it installed."""
    summary = SyncSummary(success=True)

    if not project_paths:
        logger.info("No project paths configured, nothing to sync")
        return summary
    if not targets:
        logger.info("No modules to sync")
        return summary

    if install_missing:
        for project_path in project_paths:
            if not ensure_project_dependencies(project_path, package_manager):
                logger.warning(f"Continuing without installed dependencies in {project_path}")

    for target in targets:
        for project_path in project_paths:
            destination = find_pnpm_module_path(Path(project_path) / NODE_MODULES, target.module_name)
            if destination is None:
                summary.skipped += 1
                continue

            copied, errors = copy_build_output(Path(target.module_path), destination)
            summary.errors.extend(errors)
            if copied:
                summary.synced += 1
                summary.copied_dirs += copied
                logger.info(f"Synced {target.module_name} into {project_path} ({copied} dir(s))")
            else:
                summary.skipped += 1
                logger.info(f"No build output of {target.module_name} to copy into {project_path}")

    summary.success = not summary.errors
    logger.info(
        f"Sync finished: {summary.synced} synced, {summary.skipped} skipped, "
        f"{len(targets)} module(s), {len(project_paths)} project(s)"
    )
    return summary
