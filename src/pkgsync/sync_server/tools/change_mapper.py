"""Map changed files to the workspace packages that own them."""

import logging
from pathlib import Path

from ..models.sync_models import ChangedModule, Package
from .workspace_registry import read_package_name

logger = logging.getLogger(__name__)


def is_within(path: Path, directory: Path) -> bool:
    """Check path containment by path components, so "foo-bar" is not inside "foo"."""
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    return True


def find_owning_package(file_path: str | Path, packages: list[Package]) -> Package | None:
    """Return the first package whose root directory contains file_path."""
    path = Path(file_path)
    for package in packages:
        if is_within(path, package.root_path):
            return package
    return None


def map_changes_to_modules(
    changed_files: list[str], packages: list[Package], root_dir: str | Path
) -> list[ChangedModule]:
    """Resolve changed files to the distinct packages they belong to.

    Args:
        changed_files: Paths relative to root_dir
        packages: Discovered workspace packages
        root_dir: Workspace root the paths are relative to

    Returns:
        One ChangedModule per declared package name, in first-seen order
    """
    root = Path(root_dir)
    modules: dict[str, ChangedModule] = {}
    names_by_package: dict[Path, str | None] = {}

    for file in changed_files:
        package = find_owning_package(root / file, packages)
        if package is None:
            continue

        if package.root_path not in names_by_package:
            names_by_package[package.root_path] = read_package_name(package.manifest_path)
        module_name = names_by_package[package.root_path]
        if not module_name:
            logger.warning(f"Skipping {file}: package at {package.root_path} has no usable name")
            continue

        if module_name not in modules:
            modules[module_name] = ChangedModule(module_name=module_name, module_path=package.root_path)

    return list(modules.values())
