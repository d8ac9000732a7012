from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from orchestrator import model


@dataclass(frozen=True)
class Step:
    action: str
    value: str | None = None
    extra_args: List[str] = field(default_factory=list)
    shell: str | None = None


@dataclass(frozen=True)
class Stage:
    steps: List[Step] = field(default_factory=list)


def to_config_stage(stage: model.Stage) -> Stage:
    return Stage(
        steps=[
            Step(
                action=s.action,
                value=s.value,
                extra_args=list(s.extra_args),
                shell=s.shell,
            )
            for s in stage.steps
        ]
    )


@dataclass(frozen=True)
class Job:
    project_name: str
    project_dir: str
    project_workspace: str
    terragrunt: bool
    commands: List[str]
    plan_stage: Stage
    apply_stage: Stage
    command_env_vars: Dict[str, str]
    state_env_vars: Dict[str, str]
    pull_request_number: int
    event_name: str
    requested_by: str
    namespace: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        return f"Job({self.namespace}#{self.pull_request_number}, {self.project_name}, {self.commands})"
