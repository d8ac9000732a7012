import textwrap

import pytest

from orchestrator.exceptions import ConfigurationError
from orchestrator.model import (
    DiggerConfig,
    EnvVar,
    EnvVars,
    Project,
    Step,
    collect_terraform_env_config,
)

CONFIG = textwrap.dedent(
    """
    projects:
      - name: prod
        dir: envs/prod
        workflow: prod
      - name: dev
        dir: envs/dev
        workspace: development
        terragrunt: true
      - name: modules
        dir: modules
        include_patterns: ["shared/*.tf"]
        exclude_patterns: ["modules/docs/*"]
    workflows:
      prod:
        env_vars:
          state:
            - name: TF_VAR_state
              value: s3
          commands:
            - name: TF_VAR_token
              value_from: PROD_TOKEN
        plan:
          steps:
            - init
            - plan:
                extra_args: ["-lock=false"]
            - run: echo done
              shell: bash
        workflow_configuration:
          on_pull_request_pushed: ["digger plan"]
          on_pull_request_closed: []
          on_commit_to_default: ["digger apply", "digger unlock"]
    """
)


def test_load_config():
    config = DiggerConfig.from_yaml(CONFIG)

    assert [p.name for p in config.projects] == ["prod", "dev", "modules"]
    assert config.get_project("dev").workspace == "development"
    assert config.get_project("dev").terragrunt
    assert config.get_project("dev").workflow == "default"
    assert config.get_project("prod").workspace == "default"
    assert config.get_project("nope") is None

    assert set(config.workflows) == {"prod", "default"}

    prod = config.workflows["prod"]
    assert prod.plan.steps == [
        Step(action="init"),
        Step(action="plan", extra_args=["-lock=false"]),
        Step(action="run", value="echo done", shell="bash"),
    ]
    assert [s.action for s in prod.apply.steps] == ["init", "apply"]
    assert prod.workflow_configuration.on_pull_request_closed == []
    assert prod.workflow_configuration.on_commit_to_default == [
        "digger apply",
        "digger unlock",
    ]


def test_default_workflow():
    config = DiggerConfig.from_yaml("projects:\n  - name: a\n    dir: .\n")

    workflow = config.workflows["default"]
    assert workflow.workflow_configuration.on_pull_request_pushed == ["digger plan"]
    assert workflow.workflow_configuration.on_pull_request_closed == ["digger unlock"]
    assert workflow.workflow_configuration.on_commit_to_default == ["digger apply"]
    assert [s.action for s in workflow.plan.steps] == ["init", "plan"]

    assert DiggerConfig.from_yaml("").projects == []
    assert "default" in DiggerConfig.from_yaml("").workflows


def test_invalid_config():
    with pytest.raises(ConfigurationError):
        DiggerConfig.from_yaml("projects:\n  - dir: envs/prod\n")

    with pytest.raises(ConfigurationError):
        DiggerConfig.from_yaml("projects: [\n")

    with pytest.raises(ConfigurationError, match="not unique"):
        DiggerConfig.from_yaml(
            "projects:\n  - {name: a, dir: a}\n  - {name: a, dir: b}\n"
        )


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        DiggerConfig.load(tmp_path / "digger.yml")

    path = tmp_path / "digger.yml"
    path.write_text(CONFIG)
    assert len(DiggerConfig.load(path).projects) == 3


def test_modified_projects():
    config = DiggerConfig.from_yaml(CONFIG)

    def names(files):
        return [p.name for p in config.get_modified_projects(files)]

    assert names(["envs/prod/main.tf"]) == ["prod"]
    assert names(["envs/dev/main.tf", "envs/prod/main.tf"]) == ["prod", "dev"]
    assert names(["./envs/dev/variables.tf"]) == ["dev"]
    assert names(["envs/production/main.tf"]) == []
    assert names(["README.md"]) == []

    assert names(["shared/providers.tf"]) == ["modules"]
    assert names(["modules/docs/index.md"]) == []
    assert names(["modules/vpc/main.tf"]) == ["modules"]


def test_root_project_matches_everything():
    project = Project(name="root", dir=".")
    assert project.is_impacted_by(["README.md"])
    assert not project.is_impacted_by([])


def test_collect_terraform_env_config():
    env_vars = EnvVars(
        state=[EnvVar(name="AWS_REGION", value="eu-west-1")],
        commands=[
            EnvVar(name="TF_VAR_token", value_from="SECRET_TOKEN"),
            EnvVar(name="TF_VAR_missing", value_from="NOT_SET"),
        ],
    )

    state, commands = collect_terraform_env_config(
        env_vars, environ={"SECRET_TOKEN": "abc"}
    )

    assert state == {"AWS_REGION": "eu-west-1"}
    assert commands == {"TF_VAR_token": "abc", "TF_VAR_missing": ""}


def test_collect_terraform_env_config_reads_process_env(monkeypatch):
    monkeypatch.setenv("SECRET_TOKEN", "from-env")
    env_vars = EnvVars(commands=[EnvVar(name="T", value_from="SECRET_TOKEN")])
    _, commands = collect_terraform_env_config(env_vars)
    assert commands == {"T": "from-env"}
