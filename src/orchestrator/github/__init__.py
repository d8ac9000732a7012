import logging
from typing import Any, List, Mapping, Optional, Tuple

from gidgethub import BadRequest
from gidgethub.routing import Router
from gidgethub.sansio import Event
from tabulate import tabulate

from orchestrator import config as app_config
from orchestrator.commands import (
    HELP_TEXT,
    is_help_comment,
    match_commands,
    parse_project_name,
    parse_workspace,
)
from orchestrator.exceptions import (
    AmbiguousTargetError,
    CollaboratorError,
    ConfigurationError,
    OrchestratorError,
    UnsupportedEventError,
)
from orchestrator.github.api import API, PullRequestService, collaborator_call
from orchestrator.github.events import (
    EventPackage,
    event_package_from_webhook,
    target_pull_request_number,
)
from orchestrator.github.model import IssueCommentEvent, PullRequestEvent
from orchestrator.job import Job, to_config_stage
from orchestrator.metric import error_counter, job_counter, webhook_skipped_counter
from orchestrator.model import (
    DiggerConfig,
    Project,
    Workflow,
    collect_terraform_env_config,
)

logger = logging.getLogger("orchestrator")

PULL_REQUEST_UPDATED_ACTIONS = ("opened", "reopened", "synchronize")


def find_workflow(workflows: Mapping[str, Workflow], project: Project) -> Workflow:
    workflow = workflows.get(project.workflow)
    if workflow is None:
        raise ConfigurationError(
            f"failed to find workflow config '{project.workflow}' "
            f"for project '{project.name}'"
        )
    return workflow


def make_job(
    package: EventPackage,
    project: Project,
    workflow: Workflow,
    commands: List[str],
    pull_request_number: int,
    event_name: str,
    workspace: Optional[str] = None,
) -> Job:
    state_env_vars, command_env_vars = collect_terraform_env_config(workflow.env_vars)
    return Job(
        project_name=project.name,
        project_dir=project.dir,
        project_workspace=workspace or project.workspace,
        terragrunt=project.terragrunt,
        commands=list(commands),
        plan_stage=to_config_stage(workflow.plan),
        apply_stage=to_config_stage(workflow.apply),
        command_env_vars=command_env_vars,
        state_env_vars=state_env_vars,
        pull_request_number=pull_request_number,
        event_name=event_name,
        requested_by=package.actor,
        namespace=package.repository,
    )


def select_pull_request_commands(
    event: PullRequestEvent, workflow: Workflow
) -> Optional[List[str]]:
    triggers = workflow.workflow_configuration
    if event.is_merged_into_default_branch:
        return triggers.on_commit_to_default
    elif event.action in PULL_REQUEST_UPDATED_ACTIONS:
        return triggers.on_pull_request_pushed
    elif event.action == "closed":
        return triggers.on_pull_request_closed
    return None


def convert_github_event_to_jobs(
    package: EventPackage,
    impacted_projects: List[Project],
    requested_project: Optional[Project],
    workflows: Mapping[str, Workflow],
) -> Tuple[List[Job], bool]:
    """
    Synthesize the jobs for an event.

    Returns the jobs and whether they cover every impacted project. A missing
    workflow, a requested project that is not impacted or a malformed
    workspace flag raise and no jobs are returned.
    """
    event = package.event
    jobs: List[Job] = []

    if isinstance(event, PullRequestEvent):
        for project in impacted_projects:
            workflow = find_workflow(workflows, project)
            commands = select_pull_request_commands(event, workflow)
            if commands is None:
                logger.debug(
                    "Action %s on #%d triggers nothing for %s",
                    event.action,
                    event.pull_request.number,
                    project.name,
                )
                continue
            jobs.append(
                make_job(
                    package,
                    project,
                    workflow,
                    commands,
                    pull_request_number=event.pull_request.number,
                    event_name="pull_request",
                )
            )
        return jobs, True

    elif isinstance(event, IssueCommentEvent):
        covers_all_impacted_projects = True
        run_for_projects = list(impacted_projects)

        if requested_project is not None:
            if len(impacted_projects) > 1:
                covers_all_impacted_projects = False
                run_for_projects = [requested_project]
            elif (
                len(impacted_projects) == 1
                and impacted_projects[0].name != requested_project.name
            ):
                raise AmbiguousTargetError(
                    f"requested project {requested_project.name} "
                    "is not impacted by this PR"
                )

        body = event.comment.body or ""
        workspace_override = None

        for command in match_commands(body):
            for project in run_for_projects:
                workflow = find_workflow(workflows, project)
                if workspace_override is None:
                    workspace_override = parse_workspace(body)
                jobs.append(
                    make_job(
                        package,
                        project,
                        workflow,
                        [command],
                        pull_request_number=event.issue.number,
                        event_name="issue_comment",
                        workspace=workspace_override,
                    )
                )
        return jobs, covers_all_impacted_projects

    raise UnsupportedEventError(type(event).__name__)


async def get_changed_files(service: PullRequestService, pr_number: int) -> List[str]:
    try:
        return await service.get_changed_files(pr_number)
    except CollaboratorError as e:
        raise CollaboratorError("could not get changed files") from e


async def process_github_event(
    event: Any, digger_config: DiggerConfig, service: PullRequestService
) -> Tuple[List[Project], Optional[Project], int]:
    """
    Resolve the impacted projects of an event, and the project a comment
    asked for with ``-p``.
    """
    pr_number = target_pull_request_number(event)

    changed_files = await get_changed_files(service, pr_number)
    impacted_projects = digger_config.get_modified_projects(changed_files)

    if isinstance(event, PullRequestEvent):
        return impacted_projects, None, pr_number

    requested_project = parse_project_name(event.comment.body or "")

    if requested_project == "":
        return impacted_projects, None, pr_number

    for project in impacted_projects:
        if project.name == requested_project:
            return impacted_projects, project, pr_number

    raise AmbiguousTargetError("requested project not found in modified projects")


def check_if_help_comment(event: Any) -> bool:
    if isinstance(event, IssueCommentEvent):
        return is_help_comment(event.comment.body or "")
    return False


async def get_config_from_repo(api: API) -> Optional[DiggerConfig]:
    if app_config.OVERRIDE_CONFIG is not None:
        return DiggerConfig.load(app_config.OVERRIDE_CONFIG)

    with collaborator_call(f"error getting {app_config.DIGGER_CONFIG}"):
        try:
            content = await api.get_content(app_config.DIGGER_CONFIG)
        except BadRequest as e:
            if e.status_code == 404:
                return None
            raise

    if content.type != "file":
        raise ConfigurationError("Config file is not a file")

    return DiggerConfig.from_yaml(content.decoded_content())


def render_jobs_comment(jobs: List[Job], covers_all_impacted_projects: bool) -> str:
    text = "### Digger jobs\n\n"

    rows = [
        (
            job.project_name,
            job.project_dir,
            job.project_workspace,
            ", ".join(f"`{c}`" for c in job.commands),
        )
        for job in jobs
    ]
    text += tabulate(
        rows,
        headers=("Project", "Directory", "Workspace", "Commands"),
        tablefmt="github",
    )

    if not covers_all_impacted_projects:
        text += (
            "\n\n:warning: Only the requested project runs, "
            "other impacted projects are skipped."
        )

    return text


async def handle_event(
    package: EventPackage, api: PullRequestService, digger_config: DiggerConfig
) -> List[Job]:
    pr_number = target_pull_request_number(package.event)

    if check_if_help_comment(package.event):
        logger.info("Help requested on %s#%d", package.repository, pr_number)
        if not app_config.DRY_RUN:
            await api.publish_comment(pr_number, HELP_TEXT)
        return []

    impacted_projects, requested_project, pr_number = await process_github_event(
        package.event, digger_config, api
    )
    logger.debug(
        "Impacted projects on #%d: %s",
        pr_number,
        [p.name for p in impacted_projects],
    )

    jobs, covers_all_impacted_projects = convert_github_event_to_jobs(
        package, impacted_projects, requested_project, digger_config.workflows
    )

    for job in jobs:
        logger.info("Synthesized %s", job)
        for command in job.commands:
            job_counter.labels(event=package.event_name, command=command).inc()

    if len(jobs) > 0 and not app_config.DRY_RUN:
        await api.publish_comment(
            pr_number, render_jobs_comment(jobs, covers_all_impacted_projects)
        )

    return jobs


async def report_error(
    package: EventPackage, api: PullRequestService, error: OrchestratorError
) -> None:
    error_counter.labels(context=type(error).__name__).inc()
    logger.warning(
        "Handling %s on %s failed: %s", package.event_name, package.repository, error
    )
    if app_config.DRY_RUN:
        return
    try:
        await api.publish_comment(
            target_pull_request_number(package.event), f":x: {error}"
        )
    except CollaboratorError:
        logger.error("Could not report error on %s", package.repository, exc_info=True)


async def dispatch_package(package: EventPackage, api: API) -> List[Job]:
    try:
        digger_config = await get_config_from_repo(api)
        if digger_config is None:
            logger.debug("No config file found on repository, not reacting")
            return []
        return await handle_event(package, api, digger_config)
    except OrchestratorError as e:
        await report_error(package, api, e)
        return []


def create_router():
    router = Router()

    @router.register("pull_request")
    async def on_pull_request(event: Event, api: API, **kwargs):
        action = event.data["action"]
        logger.debug("Received pull_request event, action: %s", action)

        if action not in PULL_REQUEST_UPDATED_ACTIONS + ("closed",):
            webhook_skipped_counter.labels(event="pull_request").inc()
            return

        await dispatch_package(event_package_from_webhook(event), api)

    @router.register("issue_comment", action="created")
    async def on_issue_comment(event: Event, api: API, **kwargs):
        package = event_package_from_webhook(event)

        sender = package.event.sender
        if sender is not None and sender.is_bot:
            logger.debug("Comment by bot %s, skipping", sender.login)
            webhook_skipped_counter.labels(event="issue_comment").inc()
            return

        if not package.event.issue.is_pull_request:
            logger.debug(
                "Comment on plain issue #%d, skipping", package.event.issue.number
            )
            webhook_skipped_counter.labels(event="issue_comment").inc()
            return

        body = package.event.comment.body or ""
        if not is_help_comment(body) and not match_commands(body):
            logger.debug(
                "Comment on #%d is not a command, skipping", package.event.issue.number
            )
            webhook_skipped_counter.labels(event="issue_comment").inc()
            return

        await dispatch_package(package, api)

    return router
