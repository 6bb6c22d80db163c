"""Containerization toolkit for the tally invoicing service.

Build recipes, local container runs, multi-service compose recipes with
dependency ordering, and the env-file convention that keeps credentials
out of version control.

Modules:
    recipe: Build recipe model, parser and builders (single and two-phase)
    container: ``docker`` CLI wrapper (build, run, inspect, export)
    compose: Compose recipe model, startup order, stack generation
    config: ``DeploymentConfig`` with ``TALLY_DEPLOY_*`` overrides
    results: Result models for workflow passes
    workflow: ``StartupWorkflow`` and ``ComposeRunner``
    vcs: Env-file version-control checks

Example::

    from tally.deploy import DeploymentConfig, StartupWorkflow

    result = StartupWorkflow(DeploymentConfig(compose_file="docker-compose.yml")).up()
    print(result.summary)
"""

from tally.deploy.compose import (
    BuildSource,
    ComposeRecipe,
    PortMapping,
    ServiceDeclaration,
    generate_stack_compose,
    load_compose,
    parse_compose,
    write_compose_file,
)
from tally.deploy.config import DeploymentConfig, DeploymentEngine, DeploymentMode
from tally.deploy.container import ContainerInfo, ContainerManager, ImageInfo
from tally.deploy.recipe import (
    BuildRecipe,
    BuildStage,
    load_recipe,
    parse_recipe,
    single_stage,
    two_phase,
    write_recipe,
)
from tally.deploy.results import DeploymentResult, OverallStatus, ServiceStatus
from tally.deploy.vcs import EnvFileReport, check_env_file, ensure_ignored
from tally.deploy.workflow import ComposeRunner, StartupWorkflow, run_deployment

__all__ = [
    "BuildRecipe",
    "BuildSource",
    "BuildStage",
    "ComposeRecipe",
    "ComposeRunner",
    "ContainerInfo",
    "ContainerManager",
    "DeploymentConfig",
    "DeploymentEngine",
    "DeploymentMode",
    "DeploymentResult",
    "EnvFileReport",
    "ImageInfo",
    "OverallStatus",
    "PortMapping",
    "ServiceDeclaration",
    "ServiceStatus",
    "StartupWorkflow",
    "check_env_file",
    "ensure_ignored",
    "generate_stack_compose",
    "load_compose",
    "load_recipe",
    "parse_compose",
    "parse_recipe",
    "run_deployment",
    "single_stage",
    "two_phase",
    "write_compose_file",
    "write_recipe",
]
