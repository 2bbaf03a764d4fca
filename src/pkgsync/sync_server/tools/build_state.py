"""Per-workspace session state and the build-readiness state machine."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..models.sync_models import BuildTarget, ChangedModule, DependencyRecord, Package, ReadinessState

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[], None]


class BuildReadiness:
    """Single-flight readiness gate in front of the build executor.

    NOT_READY -> BUILDING -> READY. The registered callback fires once per
    transition into READY; its exceptions are logged and never propagated.
    """

    def __init__(self, on_ready: ReadyCallback | None = None):
        self._state = ReadinessState.NOT_READY
        self._on_ready = on_ready
        self._waiters: list[asyncio.Future] = []

    @property
    def state(self) -> ReadinessState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ReadinessState.READY

    def set_on_ready(self, callback: ReadyCallback | None) -> None:
        """Register (or clear with None) the callback fired on each ready transition."""
        self._on_ready = callback

    def reset(self) -> None:
        self._state = ReadinessState.NOT_READY

    def mark_building(self) -> None:
        self._state = ReadinessState.BUILDING

    def mark_ready(self) -> None:
        if self._state is ReadinessState.READY:
            return
        self._state = ReadinessState.READY

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

        if self._on_ready is not None:
            try:
                self._on_ready()
            except Exception:
                logger.exception("Ready callback failed")

    def wait_ready(self) -> asyncio.Future:
        """Future resolved on the next transition into READY (already resolved when READY)."""
        future = asyncio.get_running_loop().create_future()
        if self.is_ready:
            future.set_result(None)
        else:
            self._waiters.append(future)
        return future


@dataclass
class WorkspaceSession:
    """Cached pipeline state for one workspace root."""

    root_path: Path
    packages: list[Package] = field(default_factory=list)
    dependency_map: dict[str, DependencyRecord] = field(default_factory=dict)
    changed_modules: list[ChangedModule] = field(default_factory=list)
    build_targets: list[BuildTarget] = field(default_factory=list)
    readiness: BuildReadiness = field(default_factory=BuildReadiness)

    def clear_targets(self) -> None:
        """Drop the cached build targets and fall back to NOT_READY."""
        self.readiness.reset()
        self.build_targets = []

    def clear(self) -> None:
        self.clear_targets()
        self.packages = []
        self.dependency_map = {}
        self.changed_modules = []


class SessionRegistry:
    """Workspace sessions keyed by resolved root path."""

    def __init__(self):
        self._sessions: dict[Path, WorkspaceSession] = {}

    @staticmethod
    def _key(root_path: str | Path) -> Path:
        return Path(root_path).expanduser().resolve()

    def get(self, root_path: str | Path) -> WorkspaceSession:
        """Return the session for root_path, creating it on first use."""
        key = self._key(root_path)
        session = self._sessions.get(key)
        if session is None:
            session = WorkspaceSession(root_path=key)
            self._sessions[key] = session
        return session

    def find(self, root_path: str | Path) -> WorkspaceSession | None:
        return self._sessions.get(self._key(root_path))

    def sessions(self) -> list[WorkspaceSession]:
        return list(self._sessions.values())

    def clear(self, root_path: str | Path | None = None) -> None:
        """Forget one session, or all of them when root_path is None."""
        if root_path is None:
            for session in self._sessions.values():
                session.clear()
            self._sessions.clear()
            return
        session = self._sessions.pop(self._key(root_path), None)
        if session is not None:
            session.clear()
