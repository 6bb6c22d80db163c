"""Tests for tally.deploy.workflow.

The container manager is a mock, so these tests check what the workflow
asks the runtime to do and in which order.
"""

from __future__ import annotations

import json
import time
from unittest.mock import MagicMock, patch

import pytest

from tally.core.errors import BuildError, PortConflictError
from tally.deploy.config import DeploymentConfig, DeploymentEngine, DeploymentMode
from tally.deploy.container import ContainerInfo, ContainerManager, ImageInfo
from tally.deploy.results import OverallStatus
from tally.deploy.workflow import ComposeRunner, StartupWorkflow, run_deployment


@pytest.fixture
def manager() -> MagicMock:
    mgr = MagicMock(spec=ContainerManager)
    mgr.build_image.side_effect = lambda context, tag, **kw: ImageInfo(tag=tag, image_id="sha256:1")
    mgr.run_image.side_effect = lambda image, name=None, ports=None, **kw: ContainerInfo(
        container_id=f"id-{name}",
        container_name=name,
        image=image,
        ports=list(ports or []),
        started_at=time.time(),
    )
    return mgr


def _config(project_dir, **kwargs) -> DeploymentConfig:
    return DeploymentConfig(
        compose_file=project_dir / "docker-compose.yml",
        project_name="shop",
        **kwargs,
    )


def _started_services(manager: MagicMock) -> list[str]:
    return [c.kwargs["name"] for c in manager.run_image.call_args_list]


class TestPlan:
    def test_plan_orders_dependencies_first(self, stack_project):
        assert StartupWorkflow(_config(stack_project)).plan() == ["db", "invoices"]

    def test_plan_does_not_need_a_runtime(self, stack_project):
        with patch("shutil.which", return_value=None):
            result = StartupWorkflow(_config(stack_project, mode=DeploymentMode.ORDER)).run()
        assert result.order == ["db", "invoices"]
        assert result.overall_status == OverallStatus.PASSED
        assert result.summary == "2/2 services planned"

    def test_targets(self, stack_project):
        assert StartupWorkflow(_config(stack_project, targets=["db"])).plan() == ["db"]
        assert StartupWorkflow(_config(stack_project, targets=["invoices"])).plan() == ["db", "invoices"]

    def test_project_name_defaults_to_directory(self, stack_project):
        config = DeploymentConfig(compose_file=stack_project / "docker-compose.yml")
        workflow = StartupWorkflow(config)
        assert workflow.project == StartupWorkflow(config).project
        assert workflow.container_name("db").endswith("-db")

    def test_invalid_recipe_reported(self, tmp_path):
        (tmp_path / "docker-compose.yml").write_text(
            "services:\n  a:\n    image: x\n    depends_on: [b]\n"
        )
        result = StartupWorkflow(_config(tmp_path, mode=DeploymentMode.ORDER)).run()
        assert result.overall_status == OverallStatus.FAILED
        assert "undeclared" in result.error


class TestUp:
    def test_starts_in_dependency_order(self, stack_project, manager):
        result = StartupWorkflow(_config(stack_project), manager=manager).up()

        assert result.overall_status == OverallStatus.PASSED, result.error
        assert _started_services(manager) == ["shop-db", "shop-invoices"]
        assert [s.status for s in result.services] == ["started", "started"]
        assert result.summary == "2/2 services started"
        manager.create_network.assert_called_once_with("shop_default")

    def test_builds_only_services_with_build_section(self, stack_project, manager):
        StartupWorkflow(_config(stack_project), manager=manager).up()

        manager.build_image.assert_called_once()
        kwargs = manager.build_image.call_args.kwargs
        assert kwargs["tag"] == "shop-invoices"
        assert kwargs["context"] == str(stack_project.resolve())

    def test_image_names(self, stack_project, manager):
        StartupWorkflow(_config(stack_project), manager=manager).up()
        images = [c.args[0] for c in manager.run_image.call_args_list]
        assert images == ["postgres:16-alpine", "shop-invoices"]

    def test_no_build(self, stack_project, manager):
        StartupWorkflow(_config(stack_project, build=False), manager=manager).up()
        manager.build_image.assert_not_called()

    def test_ports_env_and_labels(self, stack_project, manager):
        StartupWorkflow(_config(stack_project), manager=manager).up()
        app_call = manager.run_image.call_args_list[1].kwargs

        assert [p.render() for p in app_call["ports"]] == ["8080:8080"]
        assert app_call["env"]["POSTGRES_PASSWORD"] == "secret"
        assert app_call["env"]["TALLY_LOG_LEVEL"] == "DEBUG"
        assert app_call["network"] == "shop_default"
        assert app_call["network_alias"] == "invoices"
        assert app_call["labels"]["tally.project"] == "shop"
        assert app_call["labels"]["tally.service"] == "invoices"

    def test_run_uses_configured_timeout(self, stack_project, manager):
        StartupWorkflow(_config(stack_project, timeout_seconds=900), manager=manager).up()
        assert [c.kwargs["timeout"] for c in manager.run_image.call_args_list] == [900, 900]
        assert manager.build_image.call_args.kwargs["timeout"] == 900

    def test_db_has_no_published_ports(self, stack_project, manager):
        StartupWorkflow(_config(stack_project), manager=manager).up()
        assert manager.run_image.call_args_list[0].kwargs["ports"] == []

    def test_leftover_container_removed_first(self, stack_project, manager):
        StartupWorkflow(_config(stack_project), manager=manager).up()
        removed = [c.args[0] for c in manager.remove_container.call_args_list]
        assert removed == ["shop-db", "shop-invoices"]

    def test_port_conflict_stops_the_pass(self, stack_project, manager):
        def run_image(image, name=None, **kw):
            if name == "shop-invoices":
                raise PortConflictError("port is already allocated")
            return ContainerInfo(container_id="1", container_name=name, image=image, started_at=time.time())

        manager.run_image.side_effect = run_image
        result = StartupWorkflow(_config(stack_project), manager=manager).up()

        assert result.overall_status == OverallStatus.PARTIAL
        assert result.error == "port is already allocated"
        db, app = result.services
        assert db.status == "started"
        assert app.status == "failed"
        assert app.error == "port is already allocated"
        # no rollback: the database is left running
        manager.stop_container.assert_not_called()

    def test_build_failure_before_anything_starts(self, tmp_path, manager):
        (tmp_path / "docker-compose.yml").write_text(
            "services:\n  app:\n    build: .\n    depends_on: [worker]\n  worker:\n    build: ./worker\n"
        )
        manager.build_image.side_effect = BuildError("build failed")
        result = StartupWorkflow(_config(tmp_path), manager=manager).up()

        assert result.overall_status == OverallStatus.FAILED
        assert [s.status for s in result.services] == ["failed", "not_started"]
        manager.run_image.assert_not_called()

    def test_missing_env_file_fails(self, stack_project, manager):
        (stack_project / ".env").unlink()
        result = StartupWorkflow(_config(stack_project), manager=manager).up()
        assert result.overall_status == OverallStatus.FAILED
        assert ".env" in result.error

    def test_result_serializes(self, stack_project, manager):
        result = StartupWorkflow(_config(stack_project), manager=manager).up()
        data = json.loads(result.model_dump_json())
        assert data["order"] == ["db", "invoices"]
        assert data["project"] == "shop"


class TestDownAndStatus:
    def test_down_in_reverse_order(self, stack_project, manager):
        result = StartupWorkflow(_config(stack_project, mode=DeploymentMode.DOWN), manager=manager).run()

        stopped = [c.args[0] for c in manager.stop_container.call_args_list]
        assert stopped == ["shop-invoices", "shop-db"]
        manager.remove_network.assert_called_once_with("shop_default")
        assert result.overall_status == OverallStatus.PASSED

    def test_status(self, stack_project, manager):
        manager.container_status.side_effect = lambda name: "running" if name == "shop-db" else "not_found"
        manager.container_started_at.return_value = "2026-10-18T10:00:00Z"

        result = StartupWorkflow(_config(stack_project, mode=DeploymentMode.STATUS), manager=manager).run()

        db, app = result.services
        assert db.status == "running"
        assert db.started_at == "2026-10-18T10:00:00Z"
        assert app.status == "not_found"
        assert result.overall_status == OverallStatus.PARTIAL


class TestComposeRunner:
    @patch("shutil.which", return_value="/usr/bin/docker")
    @patch("subprocess.run")
    def test_up(self, mock_run, _which, stack_project):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        config = _config(stack_project, engine=DeploymentEngine.COMPOSE, targets=["invoices"])
        result = run_deployment(config)

        args = mock_run.call_args.args[0]
        assert args[:2] == ["/usr/bin/docker", "compose"]
        assert args[args.index("--project-name") + 1] == "shop"
        assert args[args.index("up"):] == ["up", "--detach", "--build", "invoices"]
        assert result.overall_status == OverallStatus.PASSED

    @patch("shutil.which", return_value="/usr/bin/docker")
    @patch("subprocess.run")
    def test_up_failure(self, mock_run, _which, stack_project):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="port is already allocated")
        result = ComposeRunner(_config(stack_project, engine=DeploymentEngine.COMPOSE)).run()
        assert result.error == "port is already allocated"
        assert result.overall_status == OverallStatus.FAILED

    @pytest.mark.parametrize(
        "stdout",
        [
            '{"Service": "db", "State": "running"}\n{"Service": "invoices", "State": "exited"}\n',
            '[{"Service": "db", "State": "running"}, {"Service": "invoices", "State": "exited"}]',
        ],
    )
    @patch("shutil.which", return_value="/usr/bin/docker")
    @patch("subprocess.run")
    def test_status(self, mock_run, _which, stdout, stack_project):
        mock_run.return_value = MagicMock(returncode=0, stdout=stdout, stderr="")
        config = _config(stack_project, engine=DeploymentEngine.COMPOSE, mode=DeploymentMode.STATUS)
        result = ComposeRunner(config).run()
        assert {s.name: s.status for s in result.services} == {"db": "running", "invoices": "exited"}

    @patch("shutil.which", return_value=None)
    def test_missing_docker(self, _which, stack_project):
        result = ComposeRunner(_config(stack_project, engine=DeploymentEngine.COMPOSE)).run()
        assert "docker CLI not found" in result.error
