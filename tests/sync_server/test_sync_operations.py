"""Tests for the sync server tool implementations."""

import asyncio
import threading
from unittest.mock import Mock, patch

import pytest
from conftest import write_package

from pkgsync.sync_server.config import SyncServerConfig
from pkgsync.sync_server.models.sync_models import BuildSummary, SyncSummary
from pkgsync.sync_server.tools.sync_operations import SyncService, extract_module_names

MODULE = "pkgsync.sync_server.tools.sync_operations"
CHANGED_FILES = "pkgsync.sync_server.tools.pipeline.get_changed_files"
WATCHER = "pkgsync.sync_server.tools.watch_manager.PackageWatcher"


def make_service(workspace, project_paths=None, **kwargs) -> SyncService:
    config = SyncServerConfig(module_paths=[str(workspace)], project_paths=project_paths or [], **kwargs)
    return SyncService(config=config)


def build_ok(*args, **kwargs):
    return Mock(stdout="", stderr="", returncode=0)


class BlockingExecutor:
    """Executor whose build waits until the test releases it."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.built: list[str] = []

    def build_targets(self, targets, token=None):
        self.built = [target.module_name for target in targets]
        self.started.set()
        self.release.wait(5)
        return BuildSummary(status="completed", success=True, total=len(targets), succeeded=len(targets))



class TestConfigurationTools:
    """Test get_configuration and check_configuration."""

    def test_get_configuration(self, workspace):
        service = make_service(workspace, project_paths=["/apps/web"], build_timeout=300)

        response = service.get_configuration()

        assert response.module_paths == [str(workspace)]
        assert response.project_paths == ["/apps/web"]
        assert response.package_manager == "pnpm"
        assert response.build_script == "build"
        assert response.build_timeout == 300

    def test_check_configuration_valid(self, workspace, temp_root):
        project = temp_root / "app"
        project.mkdir()
        service = make_service(workspace, project_paths=[str(project)])

        response = service.check_configuration()

        assert response.valid
        assert response.module_paths[0].has_workspace_manifest
        assert response.project_paths[0].is_directory
        assert response.project_paths[0].has_workspace_manifest is None

    def test_check_configuration_missing_paths(self, workspace, temp_root):
        service = make_service(workspace, project_paths=[str(temp_root / "missing")])

        response = service.check_configuration()

        assert not response.valid
        assert not response.project_paths[0].exists

    def test_check_configuration_without_workspace_manifest(self, temp_root):
        service = make_service(temp_root)

        response = service.check_configuration()

        assert not response.valid
        assert response.module_paths[0].has_workspace_manifest is False


class TestDetectionTools:
    """Test detect_changed_modules and get_build_targets."""

    @pytest.mark.asyncio
    async def test_detect_changed_modules(self, workspace):
        service = make_service(workspace)

        with patch(CHANGED_FILES, return_value=["packages/app-b/src/index.ts"]):
            response = await service.detect_changed_modules()

        assert response.success
        assert response.total == 1
        assert response.modules == {
            str(workspace): [{"module_name": "app-b", "module_path": str(workspace / "packages" / "app-b")}]
        }
        assert response.logs == []

    @pytest.mark.asyncio
    async def test_detect_missing_module_path(self, workspace, temp_root):
        service = make_service(workspace)

        response = await service.detect_changed_modules(str(temp_root / "missing"))

        assert response.success
        assert response.modules == {}
        assert response.total == 0

    @pytest.mark.asyncio
    async def test_get_build_targets(self, workspace):
        service = make_service(workspace)

        with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]):
            response = await service.get_build_targets()

        assert response.success
        assert response.ready
        assert response.total == 2
        targets = response.targets[str(workspace)]
        assert [t["module_name"] for t in targets] == ["lib-a", "app-b"]
        assert targets[0]["reason"] == "changed"
        assert "depended_by" not in targets[0]
        assert targets[1]["depended_by"] == ["lib-a"]

    @pytest.mark.asyncio
    async def test_get_build_targets_reports_unexpected_errors(self, workspace):
        service = make_service(workspace)

        with patch(
            "pkgsync.sync_server.tools.sync_operations.detect_changed_modules", side_effect=RuntimeError("disk gone")
        ):
            response = await service.get_build_targets()

        assert not response.success
        assert "disk gone" in response.message
        assert any("Build target computation failed" in line for line in response.logs)


    @pytest.mark.asyncio
    async def test_detection_is_rejected_during_a_build(self, workspace):
        service = make_service(workspace)

        async with service._lock:
            detected = await service.detect_changed_modules()
            targets = await service.get_build_targets()

        assert detected.error_code == "OPERATION_IN_PROGRESS"
        assert targets.error_code == "OPERATION_IN_PROGRESS"
        assert not targets.ready
        assert service.registry.find(str(workspace)) is None



class TestBuildTools:
    """Test build_modules, sync_modified_code and sync_specified_modules."""

    @pytest.mark.asyncio
    async def test_build_before_targets_is_skipped(self, workspace):
        service = make_service(workspace)

        with patch("subprocess.run") as mock_run:
            response = await service.build_modules()

        mock_run.assert_not_called()
        assert not response.success
        assert response.status == "skipped"
        assert response.error_code == "NOT_READY"

    @pytest.mark.asyncio
    async def test_build_after_targets(self, workspace):
        service = make_service(workspace)
        with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]):
            await service.get_build_targets()

        with patch("subprocess.run", side_effect=build_ok) as mock_run:
            response = await service.build_modules()

        assert response.success
        assert response.message == "All 2 module(s) built"
        assert [r.module_name for r in response.results] == ["lib-a", "app-b"]
        assert mock_run.call_count == 2
        assert response.logs == []

    @pytest.mark.asyncio
    async def test_concurrent_operation_is_rejected(self, workspace):
        service = make_service(workspace)

        async with service._lock:
            response = await service.build_modules()
            sync_response = await service.sync_modified_code()

        assert not response.success
        assert response.status == "rejected"
        assert response.error_code == "OPERATION_IN_PROGRESS"
        assert "in progress" in response.message
        assert sync_response.error_code == "OPERATION_IN_PROGRESS"

    @pytest.mark.asyncio
    async def test_sync_modified_code(self, workspace):
        service = make_service(workspace)

        with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]):
            with patch("subprocess.run", side_effect=build_ok):
                response = await service.sync_modified_code()

        assert response.success
        assert response.total == 2
        assert response.synced == 0
        assert not service.busy

    @pytest.mark.asyncio
    async def test_sync_uses_targets_captured_before_build(self, workspace):
        service = make_service(workspace, project_paths=["/apps/web"])
        executor = BlockingExecutor()

        with (
            patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]),
            patch(f"{MODULE}.make_executor", return_value=executor),
            patch(f"{MODULE}.sync_artifacts", return_value=SyncSummary(success=True, synced=2)) as mock_sync,
        ):
            task = asyncio.create_task(service.sync_modified_code())
            assert await asyncio.to_thread(executor.started.wait, 5)

            with patch(CHANGED_FILES, return_value=["packages/app-b/src/index.ts"]):
                recompute = await service.get_build_targets()
            session = service.registry.get(str(workspace))
            session.build_targets = [t for t in session.build_targets if t.module_name == "app-b"]

            executor.release.set()
            response = await task

        assert recompute.error_code == "OPERATION_IN_PROGRESS"
        assert executor.built == ["lib-a", "app-b"]
        synced_targets = mock_sync.call_args.args[0]
        assert [t.module_name for t in synced_targets] == ["lib-a", "app-b"]
        assert response.success
        assert response.synced == 2


    @pytest.mark.asyncio
    async def test_sync_modified_code_failure_includes_logs(self, workspace):
        service = make_service(workspace)

        with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]):
            with patch("subprocess.run", return_value=Mock(stdout="", stderr="error TS2304", returncode=1)):
                response = await service.sync_modified_code()

        assert not response.success
        assert response.failed == 2
        assert response.synced == 0
        assert any("Failed to build lib-a" in line for line in response.logs)

    @pytest.mark.asyncio
    async def test_sync_modified_code_without_changes(self, workspace):
        service = make_service(workspace)

        with patch(CHANGED_FILES, return_value=[]):
            response = await service.sync_modified_code()

        assert response.success
        assert response.total == 0
        assert response.message == "No modules to build, 0 module(s) synced"

    @pytest.mark.asyncio
    async def test_sync_specified_modules_in_dependency_order(self, workspace):
        service = make_service(workspace)

        with patch("subprocess.run", side_effect=build_ok) as mock_run:
            response = await service.sync_specified_modules(["app-b", "lib-a"])

        assert response.success
        assert [r.module_name for r in response.results] == ["lib-a", "app-b"]
        assert mock_run.call_args_list[0].kwargs["cwd"] == str(workspace / "packages" / "lib-a")

    @pytest.mark.asyncio
    async def test_sync_specified_modules_partially_found(self, workspace):
        service = make_service(workspace)

        with patch("subprocess.run", side_effect=build_ok):
            response = await service.sync_specified_modules(["lib-a", "nope"])

        assert response.success
        assert response.total == 1
        assert "not found: nope" in response.message

    @pytest.mark.asyncio
    async def test_sync_specified_modules_unknown(self, workspace):
        service = make_service(workspace)

        response = await service.sync_specified_modules(["nope"])

        assert not response.success
        assert response.error_code == "MODULE_NOT_FOUND"
        assert any("nope" in line for line in response.logs)

    @pytest.mark.asyncio
    async def test_sync_specified_modules_without_names_lists_modules(self, workspace):
        service = make_service(workspace)

        with patch("subprocess.run") as mock_run:
            response = await service.sync_specified_modules([])

        mock_run.assert_not_called()
        assert response.success
        assert response.status == "listed"
        assert response.available_modules == {str(workspace): ["app-b", "lib-a"]}
        assert any("app-b, lib-a" in line for line in response.logs)

    @pytest.mark.asyncio
    async def test_sync_specified_modules_from_scoped_names_in_text(self, workspace):
        write_package(workspace, "packages/tokens", "@kit/tokens")
        service = make_service(workspace)

        with patch("subprocess.run", side_effect=build_ok):
            response = await service.sync_specified_modules(user_input="please rebuild @kit/tokens and lib-a")

        assert response.success
        assert [r.module_name for r in response.results] == ["@kit/tokens"]

    @pytest.mark.asyncio
    async def test_sync_specified_modules_from_plain_names_in_text(self, workspace):
        service = make_service(workspace)

        with patch("subprocess.run", side_effect=build_ok):
            response = await service.sync_specified_modules(user_input="sync app-b and lib-a.")

        assert response.success
        assert [r.module_name for r in response.results] == ["lib-a", "app-b"]

    @pytest.mark.asyncio
    async def test_sync_specified_modules_text_without_names(self, workspace):
        response = await make_service(workspace).sync_specified_modules(user_input="sync everything")

        assert not response.success
        assert response.error_code == "INVALID_INPUT"


class TestWatchTools:
    """Test the watch-mode lifecycle tools."""

    @pytest.mark.asyncio
    async def test_start_status_stop(self, workspace, temp_root):
        missing = str(temp_root / "missing")
        config = SyncServerConfig(module_paths=[str(workspace), missing])
        service = SyncService(config=config)

        with patch(WATCHER, autospec=True):
            started = service.start_watch_modules()
            again = service.start_watch_modules()
            status = service.get_watch_status()
            stopped = await service.stop_watch_modules()

        assert not started.success
        assert [(r.path, r.status) for r in started.results] == [(str(workspace), "started"), (missing, "failed")]
        assert "does not exist" in started.results[1].error
        assert again.results[0].status == "already_watching"
        assert status.active_watchers == 1
        assert status.watching_paths == [str(workspace)]
        assert status.not_watching_paths == [missing]
        assert stopped.stopped_paths == [str(workspace)]
        assert service.get_watch_status().active_watchers == 0

    @pytest.mark.asyncio
    async def test_start_without_module_paths(self):
        service = SyncService(config=SyncServerConfig())

        response = service.start_watch_modules()

        assert not response.success
        assert response.message == "No module paths configured"

    @pytest.mark.asyncio
    async def test_stop_without_watchers(self, workspace):
        response = await make_service(workspace).stop_watch_modules()

        assert response.success
        assert response.stopped_paths == []
        assert response.message == "No active watchers"

    @pytest.mark.asyncio
    async def test_tools_are_rejected_for_watched_workspace(self, workspace):
        service = make_service(workspace)

        with patch(WATCHER, autospec=True):
            service.start_watch_modules()
            with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]) as mock_changes:
                detected = await service.detect_changed_modules()
                targets = await service.get_build_targets()
                built = await service.build_modules()
                synced = await service.sync_modified_code()
            await service.stop_watch_modules()

        mock_changes.assert_not_called()
        for response in (detected, targets, built, synced):
            assert not response.success
            assert response.error_code == "WATCH_ACTIVE"
        assert "stop_watch_modules" in synced.message

        with patch(CHANGED_FILES, return_value=["packages/lib-a/src/index.ts"]):
            assert (await service.detect_changed_modules()).total == 1


class TestExtractModuleNames:
    """Test picking package names out of free text."""

    def test_scoped_names(self):
        text = "sync @kit/button, @kit/tokens and @kit/button."

        assert extract_module_names(text) == ["@kit/button", "@kit/tokens"]

    def test_scoped_names_win_over_plain_names(self):
        assert extract_module_names("@kit/button and lib-a", ["lib-a"]) == ["@kit/button"]

    def test_plain_names_must_be_known(self):
        text = "rebuild lib-a, then app-b. skip other"

        assert extract_module_names(text, ["app-b", "lib-a"]) == ["lib-a", "app-b"]

    def test_nothing_found(self):
        assert extract_module_names("sync everything", ["lib-a"]) == []
