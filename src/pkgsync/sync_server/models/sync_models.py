"""Dataclass models for the sync server pipeline and MCP tool output schemas."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class BuildReason(str, Enum):
    """Why a package was selected for building."""

    CHANGED = "changed"
    DEPENDENT = "dependent"


class ReadinessState(Enum):
    """Build-readiness states of a workspace session."""

    NOT_READY = "not_ready"
    BUILDING = "building"
    READY = "ready"


@dataclass(frozen=True)
class Package:
    """Workspace package discovered from a workspace glob match."""

    name: str  # glob match relative to the workspace root
    root_path: Path
    source_path: Path
    manifest_path: Path


@dataclass
class PackageManifest:
    """Validated subset of a package.json document."""

    name: str | None = None
    dependencies: dict[str, str] = field(default_factory=dict)
    dev_dependencies: dict[str, str] = field(default_factory=dict)
    peer_dependencies: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)

    def has_script(self, script: str) -> bool:
        return bool(self.scripts.get(script))

    def all_dependency_names(self) -> list[str]:
        """Dependency names in declaration order (production, development, peer), deduplicated."""
        names: dict[str, None] = {}
        for group in (self.dependencies, self.dev_dependencies, self.peer_dependencies):
            for dep_name in group:
                names.setdefault(dep_name, None)
        return list(names)


@dataclass(frozen=True)
class DependencyRecord:
    """Buildable package with the names it declares as dependencies."""

    name: str
    root_path: Path
    # Ordered tuple rather than a set so build ordering stays deterministic
    declared_dependencies: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChangedModule:
    """Package that owns at least one changed file."""

    module_name: str
    module_path: Path


@dataclass
class BuildTarget:
    """Package slated for building."""

    module_name: str
    module_path: Path
    reason: BuildReason
    depended_by: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "module_name": self.module_name,
            "module_path": str(self.module_path),
            "reason": self.reason.value,
        }
        if self.reason is BuildReason.DEPENDENT:
            data["depended_by"] = list(self.depended_by)
        return data

    def describe_reason(self) -> str:
        if self.reason is BuildReason.CHANGED:
            return "changed"
        return f"dependent ({', '.join(self.depended_by)})"


@dataclass(frozen=True)
class FileEvent:
    """Filesystem event surfaced by a package watcher."""

    kind: str  # "add", "change" or "unlink"
    path: Path


@dataclass
class PackageBuildResult:
    """Outcome of building a single package."""

    module_name: str
    module_path: str
    success: bool
    duration: float
    exit_code: int | None = None
    error: str | None = None


@dataclass
class BuildSummary:
    """Itemised outcome of building an ordered list of targets."""

    status: str  # "completed" or "skipped"
    success: bool
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[PackageBuildResult] = field(default_factory=list)
    message: str = ""
    # Targets handed to the executor, captured before the build started
    targets: list[BuildTarget] = field(default_factory=list)

    @classmethod
    def skipped(cls, message: str) -> "BuildSummary":
        return cls(status="skipped", success=False, message=message)


@dataclass
class SyncSummary:
    """Outcome of copying build artifacts into consumer projects."""

    success: bool
    synced: int = 0
    skipped: int = 0
    copied_dirs: int = 0
    errors: list[str] = field(default_factory=list)


# MCP tool responses


@dataclass
class PathStatus:
    path: str
    exists: bool
    is_directory: bool
    has_workspace_manifest: bool | None = None


@dataclass
class GetConfigurationResponse:
    """Response schema for get_configuration tool."""

    module_paths: list[str]
    project_paths: list[str]
    package_manager: str
    build_script: str
    build_timeout: int


@dataclass
class CheckConfigurationResponse:
    """Response schema for check_configuration tool."""

    module_paths: list[PathStatus]
    project_paths: list[PathStatus]
    valid: bool


@dataclass
class DetectChangedModulesResponse:
    """Response schema for detect_changed_modules tool."""

    success: bool
    modules: dict[str, list[dict[str, str]]]
    total: int
    message: str = ""
    error_code: str | None = None
    logs: list[str] = field(default_factory=list)


@dataclass
class BuildTargetsResponse:
    """Response schema for get_build_targets tool."""

    success: bool
    targets: dict[str, list[dict[str, Any]]]
    total: int
    ready: bool
    message: str = ""
    error_code: str | None = None
    logs: list[str] = field(default_factory=list)


@dataclass
class BuildModulesResponse:
    """Response schema for build_modules, sync_modified_code and sync_specified_modules tools."""

    success: bool
    message: str
    status: str = "completed"
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[PackageBuildResult] = field(default_factory=list)
    synced: int | None = None
    error_code: str | None = None
    available_modules: dict[str, list[str]] | None = None
    logs: list[str] = field(default_factory=list)


@dataclass
class WatchStartResult:
    path: str
    status: str  # "started", "already_watching" or "failed"
    error: str | None = None


@dataclass
class WatchModulesResponse:
    """Response schema for start_watch_modules and stop_watch_modules tools."""

    success: bool
    message: str
    total_paths: int
    active_watchers: int
    results: list[WatchStartResult] = field(default_factory=list)
    stopped_paths: list[str] = field(default_factory=list)


@dataclass
class WatchStatusResponse:
    """Response schema for get_watch_status tool."""

    total_configured_paths: int
    active_watchers: int
    watching_paths: list[str]
    not_watching_paths: list[str]
    running_tasks: list[str] = field(default_factory=list)
