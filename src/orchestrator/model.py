from fnmatch import fnmatch
import io
import logging
import os
import posixpath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pydantic
import yaml

from orchestrator.exceptions import ConfigurationError

logger = logging.getLogger("orchestrator")


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="forbid", frozen=True)


class EnvVar(Model):
    name: str
    value: Optional[str] = None
    value_from: Optional[str] = None


class EnvVars(Model):
    state: List[EnvVar] = pydantic.Field(default_factory=list)
    commands: List[EnvVar] = pydantic.Field(default_factory=list)


class Step(Model):
    action: str
    value: Optional[str] = None
    extra_args: List[str] = pydantic.Field(default_factory=list)
    shell: Optional[str] = None

    @pydantic.model_validator(mode="before")
    @classmethod
    def expand_shorthand(cls, data: Any) -> Any:
        # "init" | {"run": "make", "shell": "bash"} | {"plan": {"extra_args": [...]}}
        if isinstance(data, str):
            return {"action": data}
        if isinstance(data, dict) and "action" not in data:
            if "run" in data:
                step = {"action": "run", "value": data["run"]}
                if "shell" in data:
                    step["shell"] = data["shell"]
                return step
            if len(data) == 1:
                ((action, options),) = data.items()
                if options is None:
                    options = {}
                if not isinstance(options, dict):
                    raise ValueError(f"Options for step '{action}' must be a mapping")
                return {"action": action, **options}
        return data


class Stage(Model):
    steps: List[Step] = pydantic.Field(default_factory=list)


def default_plan_stage() -> Stage:
    return Stage(steps=[Step(action="init"), Step(action="plan")])


def default_apply_stage() -> Stage:
    return Stage(steps=[Step(action="init"), Step(action="apply")])


class WorkflowConfiguration(Model):
    on_pull_request_pushed: List[str] = pydantic.Field(
        default_factory=lambda: ["digger plan"]
    )
    on_pull_request_closed: List[str] = pydantic.Field(
        default_factory=lambda: ["digger unlock"]
    )
    on_commit_to_default: List[str] = pydantic.Field(
        default_factory=lambda: ["digger apply"]
    )


class Workflow(Model):
    env_vars: EnvVars = pydantic.Field(default_factory=EnvVars)
    plan: Stage = pydantic.Field(default_factory=default_plan_stage)
    apply: Stage = pydantic.Field(default_factory=default_apply_stage)
    workflow_configuration: WorkflowConfiguration = pydantic.Field(
        default_factory=WorkflowConfiguration
    )

    @pydantic.model_validator(mode="before")
    @classmethod
    def drop_empty_sections(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class Project(Model):
    name: str
    dir: str
    workspace: str = "default"
    terragrunt: bool = False
    workflow: str = "default"
    include_patterns: List[str] = pydantic.Field(default_factory=list)
    exclude_patterns: List[str] = pydantic.Field(default_factory=list)

    def matches_file(self, path: str) -> bool:
        path = posixpath.normpath(path)
        if any(fnmatch(path, p) for p in self.exclude_patterns):
            return False

        directory = posixpath.normpath(self.dir)
        if directory == "." or path == directory or path.startswith(directory + "/"):
            return True

        return any(fnmatch(path, p) for p in self.include_patterns)

    def is_impacted_by(self, changed_files: Iterable[str]) -> bool:
        return any(self.matches_file(f) for f in changed_files)


class DiggerConfig(Model):
    projects: List[Project] = pydantic.Field(default_factory=list)
    workflows: Dict[str, Workflow] = pydantic.Field(default_factory=dict)

    @pydantic.model_validator(mode="before")
    @classmethod
    def add_default_workflow(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        declared = data.get("workflows") or {}
        if not isinstance(declared, dict):
            return data
        workflows = {
            name: {} if workflow is None else workflow
            for name, workflow in declared.items()
        }
        workflows.setdefault("default", {})
        return {**data, "projects": data.get("projects") or [], "workflows": workflows}

    @pydantic.model_validator(mode="after")
    def check_unique_project_names(self) -> "DiggerConfig":
        seen = set()
        for project in self.projects:
            if project.name in seen:
                raise ValueError(f"Project name '{project.name}' is not unique")
            seen.add(project.name)
        return self

    def get_project(self, name: str) -> Optional[Project]:
        for project in self.projects:
            if project.name == name:
                return project
        return None

    def get_modified_projects(self, changed_files: List[str]) -> List[Project]:
        impacted = [p for p in self.projects if p.is_impacted_by(changed_files)]
        logger.debug(
            "%d changed files impact %d of %d projects",
            len(changed_files),
            len(impacted),
            len(self.projects),
        )
        return impacted

    @classmethod
    def from_yaml(cls, text: str) -> "DiggerConfig":
        try:
            data = yaml.safe_load(io.StringIO(text))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Config file is not valid YAML: {e}") from e

        try:
            return cls() if data is None else cls.model_validate(data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def load(cls, path: "os.PathLike[str] | str") -> "DiggerConfig":
        logger.debug("Loading digger config from %s", path)
        try:
            with open(path) as fh:
                text = fh.read()
        except OSError as e:
            raise ConfigurationError(f"Could not read config file {path}: {e}") from e
        return cls.from_yaml(text)


def collect_terraform_env_config(
    env_vars: EnvVars, environ: Optional[Mapping[str, str]] = None
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Resolve a workflow's env var declarations into ``(state, commands)``
    mappings. Entries with ``value_from`` are read from ``environ``, which
    defaults to the process environment; unset variables resolve to ``""``.
    """
    if environ is None:
        environ = os.environ

    def resolve(declared: List[EnvVar]) -> Dict[str, str]:
        resolved = {}
        for var in declared:
            if var.value_from:
                resolved[var.name] = environ.get(var.value_from, "")
            else:
                resolved[var.name] = var.value or ""
        return resolved

    return resolve(env_vars.state), resolve(env_vars.commands)
