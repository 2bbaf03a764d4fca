"""Workspace package discovery and package.json reading."""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import ManifestReadError, ManifestValidationError, WorkspaceManifestError
from ..models.sync_models import Package, PackageManifest

logger = logging.getLogger(__name__)

WORKSPACE_MANIFEST = "pnpm-workspace.yaml"
PACKAGE_MANIFEST = "package.json"
SOURCE_DIR = "src"
EXCLUDE_PREFIX = "!"

# package.json field -> PackageManifest attribute
_DEPENDENCY_FIELDS = {
    "dependencies": "dependencies",
    "devDependencies": "dev_dependencies",
    "peerDependencies": "peer_dependencies",
}


def read_workspace_patterns(root_dir: str | Path) -> tuple[list[str], list[str]] | None:
    """Read the include and exclude glob patterns of a workspace.

    Returns:
        (include, exclude) pattern lists, or None when the root has no workspace manifest.
        Exclude patterns are returned without their leading "!".

    Raises:
        WorkspaceManifestError: If the manifest exists but cannot be parsed
    """
    workspace_file = Path(root_dir) / WORKSPACE_MANIFEST
    if not workspace_file.exists():
        return None

    try:
        config = yaml.safe_load(workspace_file.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise WorkspaceManifestError(f"Failed to read {workspace_file}: {e}") from e

    if not isinstance(config, dict):
        raise WorkspaceManifestError(f"{workspace_file} must contain a mapping")

    patterns = config.get("packages") or []
    if not isinstance(patterns, list):
        raise WorkspaceManifestError(f"'packages' in {workspace_file} must be a list")

    include: list[str] = []
    exclude: list[str] = []
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            logger.warning(f"Ignoring invalid workspace pattern {pattern!r} in {workspace_file}")
            continue
        if pattern.startswith(EXCLUDE_PREFIX):
            exclude.append(pattern[len(EXCLUDE_PREFIX):])
        else:
            include.append(pattern)
    return include, exclude


def expand_pattern(root_dir: Path, pattern: str) -> list[str]:
    """Expand a workspace glob pattern to sorted directory matches relative to root_dir."""
    pattern = pattern.rstrip("/")
    if pattern.startswith("./"):
        pattern = pattern[2:]
    try:
        matches = [p for p in root_dir.glob(pattern) if p.is_dir()]
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to expand workspace pattern '{pattern}': {e}")
        return []
    return sorted(p.relative_to(root_dir).as_posix() for p in matches)


def discover_packages(root_dir: str | Path) -> list[Package]:
    """Resolve the workspace manifest of root_dir into concrete packages.

    Exclusion patterns ("!pattern") are skipped and are not used to filter
    matches of other patterns. A match counts as a package only when it has
    both a src directory and a package.json. Overlapping patterns are not
    de-duplicated.

    Args:
        root_dir: Absolute path of the workspace root

    Returns:
        Packages in pattern order, empty when there is no workspace manifest
    """
    root = Path(root_dir)
    try:
        patterns = read_workspace_patterns(root)
    except WorkspaceManifestError as e:
        logger.error(str(e))
        return []

    if patterns is None:
        logger.debug(f"No {WORKSPACE_MANIFEST} in {root}")
        return []

    include, _exclude = patterns
    packages: list[Package] = []
    for pattern in include:
        for match in expand_pattern(root, pattern):
            package_root = root / match
            source_path = package_root / SOURCE_DIR
            manifest_path = package_root / PACKAGE_MANIFEST
            if source_path.exists() and manifest_path.exists():
                packages.append(
                    Package(
                        name=match,
                        root_path=package_root,
                        source_path=source_path,
                        manifest_path=manifest_path,
                    )
                )
    return packages


def parse_package_manifest(data: Any, path: str | Path) -> PackageManifest:
    """Validate a decoded package.json document.

    Raises:
        ManifestValidationError: If the document or a known field has the wrong type
    """
    if not isinstance(data, dict):
        raise ManifestValidationError(path, "package.json must contain a JSON object")

    name = data.get("name")
    if name is not None and not isinstance(name, str):
        raise ManifestValidationError(path, "'name' must be a string")

    fields: dict[str, dict[str, str]] = {}
    for json_field, attr in [*_DEPENDENCY_FIELDS.items(), ("scripts", "scripts")]:
        value = data.get(json_field)
        if value is None:
            fields[attr] = {}
            continue
        if not isinstance(value, dict):
            raise ManifestValidationError(path, f"'{json_field}' must be an object")
        fields[attr] = {str(k): v if isinstance(v, str) else str(v) for k, v in value.items()}

    return PackageManifest(name=name or None, **fields)


def read_package_manifest(path: str | Path) -> PackageManifest:
    """Read and validate a package.json file.

    Raises:
        ManifestReadError: If the file cannot be read or is not valid JSON
        ManifestValidationError: If the JSON does not match the expected shape
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestReadError(path, f"Failed to read package.json ({e})") from e
    return parse_package_manifest(data, path)


def read_package_name(path: str | Path) -> str | None:
    """Return the declared name of a package.json, or None when it cannot be used."""
    try:
        return read_package_manifest(path).name
    except ManifestValidationError as e:
        logger.warning(f"Invalid package manifest: {e}")
    except ManifestReadError as e:
        logger.error(str(e))
    return None
