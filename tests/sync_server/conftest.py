"""Shared fixtures for sync server tests."""

import json
import tempfile
from pathlib import Path

import pytest


def write_package(
    root: Path,
    directory: str,
    name: str | None,
    dependencies: dict[str, str] | None = None,
    dev_dependencies: dict[str, str] | None = None,
    peer_dependencies: dict[str, str] | None = None,
    build: bool = True,
    src: bool = True,
) -> Path:
    """Create a package directory with a package.json and, optionally, a src directory."""
    package_root = root / directory
    package_root.mkdir(parents=True, exist_ok=True)
    manifest: dict = {"version": "1.0.0"}
    if name is not None:
        manifest["name"] = name
    if dependencies:
        manifest["dependencies"] = dependencies
    if dev_dependencies:
        manifest["devDependencies"] = dev_dependencies
    if peer_dependencies:
        manifest["peerDependencies"] = peer_dependencies
    if build:
        manifest["scripts"] = {"build": "tsc -p ."}
    (package_root / "package.json").write_text(json.dumps(manifest, indent=2))
    if src:
        (package_root / "src").mkdir(exist_ok=True)
        (package_root / "src" / "index.ts").write_text("export {};\n")
    return package_root


def write_workspace_manifest(root: Path, patterns: list[str]) -> None:
    lines = ["packages:"] + [f"  - '{pattern}'" for pattern in patterns]
    (root / "pnpm-workspace.yaml").write_text("\n".join(lines) + "\n")


@pytest.fixture
def temp_root():
    """Temporary directory resolved so it compares equal to session paths."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def workspace(temp_root):
    """Workspace with lib-a and app-b, where app-b depends on lib-a."""
    write_workspace_manifest(temp_root, ["packages/*"])
    write_package(temp_root, "packages/lib-a", "lib-a")
    write_package(temp_root, "packages/app-b", "app-b", dependencies={"lib-a": "workspace:*"})
    return temp_root
