"""Tests for tally.deploy.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from tally.deploy.config import (
    DeploymentConfig,
    DeploymentEngine,
    DeploymentMode,
    normalize_project_name,
)


class TestDeploymentConfig:
    def test_defaults(self):
        config = DeploymentConfig()
        assert config.compose_file == Path("docker-compose.yml")
        assert config.mode == DeploymentMode.UP
        assert config.engine == DeploymentEngine.NATIVE
        assert config.targets == []
        assert config.build is True
        assert config.project_name is None

    def test_run_id_auto_generated(self):
        c1, c2 = DeploymentConfig(), DeploymentConfig()
        assert c1.run_id != c2.run_id
        assert len(c1.run_id) == 12

    def test_explicit_run_id_kept(self):
        assert DeploymentConfig(run_id="fixed").run_id == "fixed"

    def test_modes(self):
        assert [m.value for m in DeploymentMode] == ["up", "down", "status", "order"]

    def test_invalid_engine(self):
        with pytest.raises(ValidationError):
            DeploymentConfig(engine="kubernetes")


class TestProjectResolution:
    def test_explicit_name_wins(self, tmp_path):
        config = DeploymentConfig(compose_file=tmp_path / "docker-compose.yml", project_name="Shop")
        assert config.resolve_project_name("other") == "shop"

    def test_compose_name_then_directory(self, tmp_path):
        project_dir = tmp_path / "My Invoices"
        project_dir.mkdir()
        config = DeploymentConfig(compose_file=project_dir / "docker-compose.yml")
        assert config.resolve_project_name("billing") == "billing"
        assert config.resolve_project_name(None) == "my-invoices"

    def test_network_default(self):
        assert DeploymentConfig().resolve_network("shop") == "shop_default"
        assert DeploymentConfig(network="custom").resolve_network("shop") == "custom"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("Shop", "shop"), ("my app", "my-app"), ("a.b/c", "abc"), ("--", "tally"), ("x_y-1", "x_y-1")],
    )
    def test_normalize(self, raw, expected):
        assert normalize_project_name(raw) == expected


class TestFromEnv:
    @patch.dict(
        os.environ,
        {
            "TALLY_DEPLOY_TARGETS": "invoices, db",
            "TALLY_DEPLOY_MODE": "status",
            "TALLY_DEPLOY_ENGINE": "compose",
            "TALLY_DEPLOY_BUILD": "false",
            "TALLY_DEPLOY_TIMEOUT_SECONDS": "30",
            "TALLY_DEPLOY_PROJECT_NAME": "shop",
            "TALLY_DEPLOY_COMPOSE_FILE": "stack.yml",
        },
    )
    def test_env_vars(self):
        config = DeploymentConfig.from_env()
        assert config.targets == ["invoices", "db"]
        assert config.mode == DeploymentMode.STATUS
        assert config.engine == DeploymentEngine.COMPOSE
        assert config.build is False
        assert config.timeout_seconds == 30
        assert config.project_name == "shop"
        assert config.compose_file == Path("stack.yml")

    @patch.dict(os.environ, {"TALLY_DEPLOY_MODE": "status"})
    def test_overrides_beat_env(self):
        assert DeploymentConfig.from_env(mode="down").mode == DeploymentMode.DOWN

    @patch.dict(os.environ, {"TALLY_DEPLOY_PROJECT_NAME": "shop"})
    def test_none_overrides_ignored(self):
        assert DeploymentConfig.from_env(project_name=None).project_name == "shop"
