"""Sources of changed files: a one-shot git diff or a continuous watchfiles stream."""

import asyncio
import logging
import subprocess
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from watchfiles import Change, DefaultFilter, awatch

from ..models.sync_models import FileEvent

logger = logging.getLogger(__name__)

GIT_COMMANDS = [
    ["git", "diff", "--name-only"],
    ["git", "diff", "--cached", "--name-only"],
    ["git", "ls-files", "--others", "--exclude-standard"],
]

EVENT_KINDS = {
    Change.added: "add",
    Change.modified: "change",
    Change.deleted: "unlink",
}


def get_changed_files(root_dir: str | Path, timeout: int = 30) -> list[str]:
    """List unstaged, staged and untracked files of the repository at root_dir.

    Never raises: any git failure is logged and reported as no changes.

    Returns:
        Repo-relative paths, de-duplicated, in first-seen order
    """
    changed: dict[str, None] = {}
    try:
        for cmd in GIT_COMMANDS:
            result = subprocess.run(  # noqa: S603 # Safe: fixed git argument lists
                cmd,
                cwd=str(root_dir),
                capture_output=True,
                text=True,
                timeout=timeout,
                check=True,
            )
            for line in result.stdout.splitlines():
                if line.strip():
                    changed.setdefault(line.strip(), None)
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        logger.error(f"Failed to list git changes in {root_dir}: {stderr or e}")
        return []
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.error(f"Failed to list git changes in {root_dir}: {e}")
        return []

    return list(changed)


class SourceChangeFilter(DefaultFilter):
    """Ignore dotfiles, installed dependencies, build output and source maps."""

    ignore_dirs: Sequence[str] = (*DefaultFilter.ignore_dirs, "node_modules", "dist")

    def __init__(self, roots: Sequence[str | Path] = ()):
        super().__init__()
        self.roots = [Path(root) for root in roots]

    def __call__(self, change: Change, path: str) -> bool:
        file_path = Path(path)
        if file_path.name.endswith(".map"):
            return False
        if any(part.startswith(".") for part in self._relative_parts(file_path)):
            return False
        return super().__call__(change, path)

    def _relative_parts(self, path: Path) -> tuple[str, ...]:
        # Hidden directories above a watched root must not hide the whole tree
        for root in self.roots:
            try:
                return path.relative_to(root).parts
            except ValueError:
                continue
        return (path.name,)


class PackageWatcher:
    """Watch the source directories of a workspace's packages.

    Events are delivered once the watched tree has been quiet for the
    stability window. Files present when watching starts produce no events.
    """

    def __init__(
        self,
        root_dir: str | Path,
        source_paths: list[Path],
        on_change: Callable[[FileEvent], Awaitable[None] | None],
        stability_ms: int = 100,
        poll_ms: int = 50,
        force_polling: bool | None = None,
    ):
        self.root_dir = Path(root_dir)
        self.source_paths = list(source_paths)
        self.on_change = on_change
        self.stability_ms = stability_ms
        self.poll_ms = poll_ms
        self.force_polling = force_polling
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin watching on the running event loop."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._watch_loop(), name=f"watch:{self.root_dir}")

    async def stop(self) -> None:
        """Stop watching and wait for the watch loop to finish."""
        self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=3.0)
            except asyncio.TimeoutError:
                logger.warning(f"Watcher for {self.root_dir} did not stop in time, cancelling")
                self._task.cancel()
            self._task = None

    async def _watch_loop(self) -> None:
        if not self.source_paths:
            logger.warning(f"No source directories to watch under {self.root_dir}")
            return

        async for changes in awatch(
            *self.source_paths,
            watch_filter=SourceChangeFilter(self.source_paths),
            stop_event=self._stop_event,
            step=self.stability_ms,
            poll_delay_ms=self.poll_ms,
            force_polling=self.force_polling,
            yield_on_timeout=False,
        ):
            for change, path in sorted(changes, key=lambda c: c[1]):
                event = FileEvent(kind=EVENT_KINDS[change], path=Path(path))
                try:
                    result = self.on_change(event)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception(f"Change handler failed for {path}")
