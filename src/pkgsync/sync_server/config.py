"""Configuration management for the sync server."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_env_array(value: Any) -> list[str]:
    """Parse an environment value into a list of non-empty strings.

    Accepts a JSON array, a comma-separated string, or a single path.
    """
    if isinstance(value, list):
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    if not isinstance(value, str):
        return []

    text = value.strip()
    if not text:
        return []

    if text.startswith("[") and text.endswith("]"):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON array from environment: {e}")
        else:
            if isinstance(parsed, list):
                return parse_env_array(parsed)

    if "," in text:
        return [item.strip() for item in text.split(",") if item.strip()]

    return [text]


@dataclass
class SyncServerConfig:
    """Configuration class for the sync server."""

    # Workspace roots containing pnpm-workspace.yaml
    module_paths: list[str] = field(default_factory=list)
    # Consumer projects whose node_modules receive build artifacts
    project_paths: list[str] = field(default_factory=list)

    # Build Configuration
    package_manager: str = "pnpm"
    build_script: str = "build"
    build_timeout: int = 600  # seconds
    inherit_build_output: bool = False
    git_timeout: int = 30  # seconds

    # Watch Configuration
    watch_stability_ms: int = 100
    watch_poll_ms: int = 50

    # Runtime Configuration
    log_level: str = "INFO"

    @classmethod
    def from_environment(cls) -> "SyncServerConfig":
        """Create configuration from environment variables."""
        module_paths = parse_env_array(os.getenv("MODULE_PATHS", ""))
        project_paths = parse_env_array(os.getenv("PROJECT_PATHS") or os.getenv("PROJECT_PATCHS", ""))

        if not module_paths and not project_paths:
            legacy = _load_legacy_project_config(os.getenv("PROJECT_CONFIG"))
            module_paths = legacy.get("modulePaths", [])
            project_paths = legacy.get("projectPaths", [])

        return cls(
            module_paths=module_paths,
            project_paths=project_paths,
            package_manager=os.getenv("PACKAGE_MANAGER", "pnpm"),
            build_script=os.getenv("BUILD_SCRIPT", "build"),
            build_timeout=int(os.getenv("BUILD_TIMEOUT", "600")),
            inherit_build_output=os.getenv("INHERIT_BUILD_OUTPUT", "false").lower() == "true",
            git_timeout=int(os.getenv("GIT_TIMEOUT", "30")),
            watch_stability_ms=int(os.getenv("WATCH_STABILITY_MS", "100")),
            watch_poll_ms=int(os.getenv("WATCH_POLL_MS", "50")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> tuple[bool, list[str]]:
        """Validate configuration settings."""
        errors = []

        if self.build_timeout <= 0:
            errors.append("build_timeout must be positive")

        if self.git_timeout <= 0:
            errors.append("git_timeout must be positive")

        if self.watch_stability_ms <= 0:
            errors.append("watch_stability_ms must be positive")

        if self.watch_poll_ms <= 0:
            errors.append("watch_poll_ms must be positive")

        if not self.build_script:
            errors.append("build_script cannot be empty")

        if not self.package_manager:
            errors.append("package_manager cannot be empty")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"log_level must be one of {VALID_LOG_LEVELS}")

        return len(errors) == 0, errors

    def __post_init__(self):
        """Post-initialization validation."""
        is_valid, errors = self.validate()
        if not is_valid:
            raise ValueError(f"Invalid configuration: {', '.join(errors)}")


def _load_legacy_project_config(raw: str | None) -> dict[str, list[str]]:
    """Read the older PROJECT_CONFIG JSON object form."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse PROJECT_CONFIG: {e}")
        return {}
    if not isinstance(data, dict):
        logger.error("PROJECT_CONFIG must be a JSON object")
        return {}
    return {
        "modulePaths": parse_env_array(data.get("modulePaths", [])),
        "projectPaths": parse_env_array(data.get("projectPaths", [])),
    }


# Global configuration instance
_config: SyncServerConfig | None = None


def get_config() -> SyncServerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SyncServerConfig.from_environment()
        if not _config.module_paths and not _config.project_paths:
            logger.warning("No module or project paths configured")
    return _config


def set_config(config: SyncServerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
