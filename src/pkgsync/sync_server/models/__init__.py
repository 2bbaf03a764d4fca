"""Sync server models."""

from .sync_models import (
    BuildModulesResponse,
    BuildReason,
    BuildSummary,
    BuildTarget,
    BuildTargetsResponse,
    ChangedModule,
    CheckConfigurationResponse,
    DependencyRecord,
    DetectChangedModulesResponse,
    FileEvent,
    GetConfigurationResponse,
    Package,
    PackageBuildResult,
    PackageManifest,
    PathStatus,
    ReadinessState,
    SyncSummary,
    WatchModulesResponse,
    WatchStartResult,
    WatchStatusResponse,
)

__all__ = [
    "BuildModulesResponse",
    "BuildReason",
    "BuildSummary",
    "BuildTarget",
    "BuildTargetsResponse",
    "ChangedModule",
    "CheckConfigurationResponse",
    "DependencyRecord",
    "DetectChangedModulesResponse",
    "FileEvent",
    "GetConfigurationResponse",
    "Package",
    "PackageBuildResult",
    "PackageManifest",
    "PathStatus",
    "ReadinessState",
    "SyncSummary",
    "WatchModulesResponse",
    "WatchStartResult",
    "WatchStatusResponse",
]
