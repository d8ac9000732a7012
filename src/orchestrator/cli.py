import asyncio
from contextlib import asynccontextmanager
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from gidgethub import aiohttp as gh_aiohttp
import aiohttp
import cachetools

from orchestrator import config
from orchestrator.exceptions import OrchestratorError
from orchestrator.github import convert_github_event_to_jobs, process_github_event
from orchestrator.github.api import API
from orchestrator.github.events import event_package_from_payload
from orchestrator.logger import LOG_FORMAT, configure_logging
from orchestrator.model import DiggerConfig


logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)
logger = logging.getLogger("orchestrator")

app = typer.Typer()
httpcache = cachetools.LRUCache(maxsize=500)


class ChangedFiles:
    """Serves a fixed list of changed files instead of asking GitHub."""

    def __init__(self, files: List[str]):
        self.files = files

    async def get_changed_files(self, pr_number: int) -> List[str]:
        return list(self.files)


@app.callback()
def init():
    configure_logging(logger)


@asynccontextmanager
async def token_client():
    async with aiohttp.ClientSession() as session:
        yield gh_aiohttp.GitHubAPI(
            session,
            __name__,
            oauth_token=config.GITHUB_TOKEN,
            cache=httpcache,
            base_url=config.GITHUB_API_URL,
        )


@app.command()
def jobs(
    event_name: str,
    payload: Path,
    config_path: Optional[Path] = typer.Option(None, "--config"),
    changed_file: Optional[List[str]] = typer.Option(None, "--changed-file"),
):
    """Print the jobs a stored webhook payload synthesizes, as JSON."""

    async def handle():
        package = event_package_from_payload(event_name, json.loads(payload.read_text()))
        digger_config = DiggerConfig.load(config_path or config.DIGGER_CONFIG)

        if changed_file:
            resolved = await process_github_event(
                package.event, digger_config, ChangedFiles(changed_file)
            )
        else:
            async with token_client() as gh:
                api = API.for_repository(gh, package.repository)
                resolved = await process_github_event(package.event, digger_config, api)

        impacted_projects, requested_project, _ = resolved
        return convert_github_event_to_jobs(
            package, impacted_projects, requested_project, digger_config.workflows
        )

    try:
        synthesized, covers_all_impacted_projects = asyncio.run(handle())
    except OrchestratorError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(
        json.dumps(
            {
                "covers_all_impacted_projects": covers_all_impacted_projects,
                "jobs": [j.to_dict() for j in synthesized],
            },
            indent=2,
        )
    )


@app.command()
def serve(host: str = "0.0.0.0", port: int = 8000):
    from orchestrator.web import create_app

    create_app().run(host=host, port=port, single_process=True)
