"""Tests for tally.deploy.recipe: builders, rendering, parsing, validation."""

from __future__ import annotations

import pytest

from tally.core.errors import RecipeError
from tally.deploy.recipe import (
    BUILDER_STAGE,
    BuildRecipe,
    BuildStage,
    CopyStep,
    EnvStep,
    RunStep,
    WorkdirStep,
    load_recipe,
    parse_recipe,
    single_stage,
    two_phase,
    write_recipe,
)

TWO_PHASE_TEXT = """\
# builder
FROM python:3.12-slim AS builder
WORKDIR /src
COPY . .
RUN python -m venv /opt/venv && \\
    /opt/venv/bin/pip install --no-cache-dir .

FROM python:3.12-slim
ENV PATH=/opt/venv/bin:$PATH
COPY --from=builder /opt/venv /opt/venv
EXPOSE 8080/tcp
CMD ["tally", "serve"]
"""


def _single():
    return single_stage(
        "python:3.12-slim",
        workdir="/app",
        build_command="pip install --no-cache-dir .",
        port=8080,
        cmd=["tally", "serve"],
    )


def _two_phase():
    return two_phase(
        "golang:1.22",
        "alpine:3.19",
        workdir="/src",
        build_command="go build -o /out/invoices .",
        artifact="/out/invoices",
        artifact_dest="/usr/local/bin/invoices",
        port=8080,
        cmd=["invoices"],
    )


# ===========================================================================
# Builders
# ===========================================================================


class TestSingleStage:
    def test_render(self):
        assert _single().render() == (
            "FROM python:3.12-slim\n"
            "WORKDIR /app\n"
            "COPY . .\n"
            "RUN pip install --no-cache-dir .\n"
            "EXPOSE 8080\n"
            'CMD ["tally", "serve"]\n'
        )

    def test_properties(self):
        recipe = _single()
        assert not recipe.is_multi_stage
        assert recipe.final_stage.workdir == "/app"
        assert recipe.final_stage.expose == [8080]
        assert recipe.final_stage.run_commands == ["pip install --no-cache-dir ."]

    def test_runtime_sources_are_build_context(self):
        sources = _single().runtime_sources()
        assert [(s.path, s.destination, s.stage) for s in sources] == [(".", ".", None)]

    def test_shell_form_cmd(self):
        recipe = single_stage("alpine", workdir="/", port=80, cmd="./run.sh")
        assert recipe.render().endswith("CMD ./run.sh\n")

    def test_env(self):
        recipe = single_stage("alpine", workdir="/", port=80, cmd="x", env={"MODE": "prod run"})
        assert 'ENV MODE="prod run"' in recipe.render()
        assert recipe.final_stage.env == {"MODE": "prod run"}

    def test_invalid_port(self):
        with pytest.raises(ValueError):
            single_stage("alpine", workdir="/", port=70000, cmd="x")


class TestTwoPhase:
    def test_structure(self):
        recipe = _two_phase()
        assert recipe.is_multi_stage
        assert recipe.stages[0].name == BUILDER_STAGE
        assert recipe.stages[0].base_image == "golang:1.22"
        assert recipe.final_stage.base_image == "alpine:3.19"
        assert recipe.final_stage.expose == [8080]

    def test_only_artifact_reaches_final_image(self):
        sources = _two_phase().runtime_sources()
        assert len(sources) == 1
        assert sources[0].stage == BUILDER_STAGE
        assert sources[0].path == "/out/invoices"
        assert sources[0].destination == "/usr/local/bin/invoices"
        assert str(sources[0]) == "builder:/out/invoices -> /usr/local/bin/invoices"

    def test_build_command_stays_in_builder(self):
        recipe = _two_phase()
        assert recipe.stages[0].run_commands == ["go build -o /out/invoices ."]
        assert recipe.final_stage.run_commands == []

    def test_render(self):
        text = _two_phase().render()
        assert text.startswith("FROM golang:1.22 AS builder\n")
        assert "\n\nFROM alpine:3.19\n" in text
        assert "COPY --from=builder /out/invoices /usr/local/bin/invoices\n" in text

    def test_artifact_dest_defaults_to_artifact(self):
        recipe = two_phase(
            "python:3.12", "python:3.12-slim",
            workdir="/src", build_command="make", artifact="/opt/venv", port=8080, cmd="serve",
        )
        assert recipe.runtime_sources()[0].destination == "/opt/venv"


# ===========================================================================
# Validation
# ===========================================================================


class TestValidate:
    def test_no_stages(self):
        with pytest.raises(RecipeError, match="no stages"):
            BuildRecipe().validate_recipe()

    def test_missing_cmd(self):
        recipe = BuildRecipe(stages=[BuildStage(base_image="alpine")])
        with pytest.raises(RecipeError, match="start command"):
            recipe.validate_recipe()

    def test_copy_from_unknown_stage(self):
        stage = BuildStage(
            base_image="alpine",
            steps=[CopyStep(sources=["/x"], destination="/x", from_stage="nope")],
            cmd="x",
        )
        with pytest.raises(RecipeError, match="earlier stage"):
            BuildRecipe(stages=[stage]).validate_recipe()

    def test_copy_from_later_stage(self):
        first = BuildStage(
            base_image="alpine",
            steps=[CopyStep(sources=["/x"], destination="/x", from_stage="later")],
        )
        later = BuildStage(base_image="alpine", name="later", cmd="x")
        with pytest.raises(RecipeError):
            BuildRecipe(stages=[first, later]).validate_recipe()

    def test_copy_from_numeric_index(self):
        first = BuildStage(base_image="alpine")
        second = BuildStage(
            base_image="alpine",
            steps=[CopyStep(sources=["/x"], destination="/x", from_stage="0")],
            cmd="x",
        )
        BuildRecipe(stages=[first, second]).validate_recipe()

    def test_duplicate_stage_names(self):
        stages = [
            BuildStage(base_image="alpine", name="b"),
            BuildStage(base_image="alpine", name="b", cmd="x"),
        ]
        with pytest.raises(RecipeError, match="Duplicate"):
            BuildRecipe(stages=stages).validate_recipe()

    def test_stage_lookup(self):
        recipe = _two_phase()
        assert recipe.stage("builder") is recipe.stages[0]
        assert recipe.stage("1") is recipe.stages[1]
        with pytest.raises(RecipeError):
            recipe.stage("missing")


# ===========================================================================
# Parsing
# ===========================================================================


class TestParseRecipe:
    def test_two_phase_text(self):
        recipe = parse_recipe(TWO_PHASE_TEXT).validate_recipe()
        assert recipe.is_multi_stage
        builder, runtime = recipe.stages
        assert builder.name == "builder"
        assert builder.workdir == "/src"
        assert builder.run_commands == [
            "python -m venv /opt/venv && /opt/venv/bin/pip install --no-cache-dir ."
        ]
        assert runtime.env == {"PATH": "/opt/venv/bin:$PATH"}
        assert runtime.expose == [8080]
        assert runtime.cmd == ["tally", "serve"]
        assert [str(s) for s in recipe.runtime_sources()] == ["builder:/opt/venv -> /opt/venv"]

    def test_render_parse_render_is_stable(self):
        for recipe in (_single(), _two_phase()):
            assert parse_recipe(recipe.render()).render() == recipe.render()

    def test_legacy_env_form(self):
        recipe = parse_recipe("FROM alpine\nENV GREETING hello world\nCMD x\n")
        assert recipe.final_stage.env == {"GREETING": "hello world"}

    def test_multiple_env_pairs(self):
        recipe = parse_recipe('FROM alpine\nENV A=1 B="two words"\nCMD x\n')
        assert recipe.final_stage.env == {"A": "1", "B": "two words"}

    def test_relative_workdir(self):
        recipe = parse_recipe("FROM alpine\nWORKDIR /app\nWORKDIR src\nCMD x\n")
        assert recipe.final_stage.workdir == "/app/src"

    def test_copy_flags(self):
        recipe = parse_recipe("FROM alpine\nCOPY --chown=app:app a b /dest/\nCMD x\n")
        copy = recipe.final_stage.copies[0]
        assert copy.sources == ["a", "b"]
        assert copy.destination == "/dest/"
        assert copy.chown == "app:app"

    def test_copy_json_form(self):
        recipe = parse_recipe('FROM alpine\nCOPY ["my file", "/dest"]\nCMD x\n')
        assert recipe.final_stage.copies[0].sources == ["my file"]

    def test_from_platform(self):
        recipe = parse_recipe("FROM --platform=linux/amd64 alpine AS base\nCMD x\n")
        assert recipe.final_stage.platform == "linux/amd64"
        assert recipe.final_stage.name == "base"

    def test_step_order_preserved(self):
        recipe = parse_recipe("FROM alpine\nRUN a\nWORKDIR /w\nRUN b\nCMD x\n")
        steps = recipe.final_stage.steps
        assert [type(s) for s in steps] == [RunStep, WorkdirStep, RunStep]

    @pytest.mark.parametrize(
        ("text", "line"),
        [
            ("FROM alpine\nADD x /x\n", 2),
            ("FROM alpine\n\n# note\nHEALTHCHECK CMD true\n", 4),
            ("WORKDIR /app\nFROM alpine\n", 1),
            ("FROM alpine\nEXPOSE 53/udp\n", 2),
            ("FROM alpine\nEXPOSE http\n", 2),
            ("FROM alpine\nCMD [\"broken\"\n", 2),
            ("FROM alpine\nCOPY onlyone\n", 2),
            ("FROM alpine\nCOPY --link a b\n", 2),
        ],
    )
    def test_errors_carry_line_number(self, text, line):
        with pytest.raises(RecipeError) as exc_info:
            parse_recipe(text)
        assert exc_info.value.line == line
        assert exc_info.value.message.startswith(f"line {line}:")

    def test_empty_recipe(self):
        with pytest.raises(RecipeError, match="no FROM"):
            parse_recipe("# nothing here\n")


class TestRecipeFiles:
    def test_write_and_load(self, tmp_path):
        path = tmp_path / "Dockerfile"
        write_recipe(_two_phase(), path)
        loaded = load_recipe(path)
        assert loaded.render() == _two_phase().render()

    def test_write_validates(self, tmp_path):
        with pytest.raises(RecipeError):
            write_recipe(BuildRecipe(stages=[BuildStage(base_image="alpine")]), tmp_path / "D")
        assert not (tmp_path / "D").exists()

    def test_load_missing(self, tmp_path):
        with pytest.raises(RecipeError) as exc_info:
            load_recipe(tmp_path / "nope")
        assert exc_info.value.context["path"].endswith("nope")

    def test_load_parse_error_has_path(self, tmp_path):
        path = tmp_path / "Dockerfile"
        path.write_text("FROM alpine\nADD x y\n")
        with pytest.raises(RecipeError) as exc_info:
            load_recipe(path)
        assert exc_info.value.context["path"] == str(path)
        assert exc_info.value.context["line"] == 2

    def test_models_serialize(self):
        data = _two_phase().model_dump()
        assert data["stages"][1]["steps"][0]["kind"] == "copy"
        assert BuildRecipe.model_validate(data).render() == _two_phase().render()

    def test_env_step_model(self):
        assert EnvStep(values={"A": ""}).render() == 'ENV A=""'
