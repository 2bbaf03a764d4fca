"""Run package build scripts in dependency order."""

import logging
import subprocess
import sys
import time

from ..models.sync_models import BuildSummary, BuildTarget, PackageBuildResult
from .task_supervisor import CancellationToken

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


class BuildExecutor:
    """Run `<package manager> run <script>` in each target's directory.

    A failed or timed-out package is recorded and the remaining targets are
    still built.
    """

    def __init__(
        self,
        package_manager: str = "pnpm",
        build_script: str = "build",
        timeout: int = 600,
        inherit_output: bool = False,
    ):
        self.package_manager = package_manager
        self.build_script = build_script
        self.timeout = timeout
        self.inherit_output = inherit_output

    @property
    def command(self) -> list[str]:
        return [self.package_manager, "run", self.build_script]

    def build_package(self, target: BuildTarget) -> PackageBuildResult:
        """Build a single package and report its outcome."""
        start_time = time.time()
        logger.info(f"Running '{' '.join(self.command)}' in {target.module_path}")

        try:
            if self.inherit_output:
                # stdout carries the MCP protocol, so build output goes to stderr
                result = subprocess.run(  # noqa: S603 # Safe: package manager and script come from server config
                    self.command,
                    cwd=str(target.module_path),
                    stdout=sys.stderr,
                    stderr=sys.stderr,
                    text=True,
                    timeout=self.timeout,
                )
            else:
                result = subprocess.run(  # noqa: S603
                    self.command,
                    cwd=str(target.module_path),
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
        except subprocess.TimeoutExpired:
            return self._result(target, start_time, error=f"Build timed out after {self.timeout} seconds")
        except (subprocess.SubprocessError, OSError) as e:
            return self._result(target, start_time, error=f"Build failed to start: {e}")

        if result.returncode != 0:
            output = "\n".join(
                f"{result.stdout or ''}\n{result.stderr or ''}".strip().splitlines()[-OUTPUT_TAIL_LINES:]
            )
            if output:
                logger.error(f"Build output of {target.module_name}:\n{output}")
            return self._result(
                target, start_time, exit_code=result.returncode, error=f"Build exited with code {result.returncode}"
            )

        return self._result(target, start_time, exit_code=0)

    def _result(
        self, target: BuildTarget, start_time: float, exit_code: int | None = None, error: str | None = None
    ) -> PackageBuildResult:
        return PackageBuildResult(
            module_name=target.module_name,
            module_path=str(target.module_path),
            success=error is None,
            duration=round(time.time() - start_time, 2),
            exit_code=exit_code,
            error=error,
        )

    def build_targets(self, targets: list[BuildTarget], token: CancellationToken | None = None) -> BuildSummary:
        """Build targets in the given order.

        Raises:
            PipelineAborted: If token is cancelled between two package builds
        """
        if not targets:
            logger.info("No modules to build")
            return BuildSummary(status="completed", success=True, message="No modules to build")

        logger.info(f"Building {len(targets)} module(s)")
        summary = BuildSummary(status="completed", success=True, total=len(targets))

        for index, target in enumerate(targets, start=1):
            if token is not None:
                token.raise_if_cancelled()

            logger.info(f"[{index}/{len(targets)}] {target.module_name} - {target.describe_reason()}")
            result = self.build_package(target)
            summary.results.append(result)

            if result.success:
                summary.succeeded += 1
                logger.info(f"Built {target.module_name} in {result.duration}s")
            else:
                summary.failed += 1
                logger.error(f"Failed to build {target.module_name}: {result.error}")

        summary.success = summary.failed == 0
        if summary.success:
            summary.message = f"All {summary.total} module(s) built"
        else:
            summary.message = f"{summary.failed} of {summary.total} module(s) failed to build"
        logger.info(f"Build finished: {summary.succeeded} succeeded, {summary.failed} failed, {summary.total} total")
        return summary
