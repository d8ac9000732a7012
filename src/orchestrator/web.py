import logging
from typing import Optional

from sanic import Sanic, response, Request
import aiohttp
import gidgethub
from gidgethub import sansio
from gidgethub import aiohttp as gh_aiohttp
from sanic.log import logger
import sanic.log
import cachetools
import pydantic
from prometheus_client import core
from prometheus_client.exposition import generate_latest

from orchestrator import config
from orchestrator.github import create_router
from orchestrator.github.api import API
from orchestrator.github.events import SUPPORTED_EVENTS
from orchestrator.github.model import Repository
from orchestrator.logger import LOG_FORMAT, configure_logging
from orchestrator.metric import (
    error_counter,
    webhook_counter,
    webhook_skipped_counter,
)


def client_for_app(app) -> gh_aiohttp.GitHubAPI:
    return gh_aiohttp.GitHubAPI(
        app.ctx.aiohttp_session,
        __name__,
        oauth_token=app.config.GITHUB_TOKEN,
        cache=app.ctx.cache,
        base_url=app.config.GITHUB_API_URL,
    )


def is_allowed_repository(repo: Repository) -> bool:
    if config.REPO_ALLOWLIST is None:
        return True
    return repo.full_name in config.REPO_ALLOWLIST


async def process_webhook(app, event: sansio.Event, api: Optional[API] = None) -> None:
    webhook_counter.labels(event=event.event).inc()

    if event.event not in SUPPORTED_EVENTS:
        webhook_skipped_counter.labels(event=event.event).inc()
        return

    try:
        repo = Repository.model_validate(event.data["repository"])
    except (KeyError, pydantic.ValidationError):
        logger.warning("Event %s carries no usable repository, skipping", event.event)
        webhook_skipped_counter.labels(event=event.event).inc()
        return

    logger.debug("Repository %s", repo.full_name)

    if not is_allowed_repository(repo):
        logger.warning(
            "Webhook triggered on repository not in allowlist: %s", repo.full_name
        )
        webhook_skipped_counter.labels(event=event.event).inc()
        return

    if api is None:
        api = API.for_repository(client_for_app(app), repo.full_name)

    logger.debug("Dispatching event %s", event.event)
    try:
        await app.ctx.github_router.dispatch(event, api, app=app)
    except Exception:
        error_counter.labels(context="event_dispatch").inc()
        logger.error("Exception raised when dispatching event", exc_info=True)


logging.basicConfig(format=LOG_FORMAT, level=logging.INFO)


def create_app():

    app = Sanic("orchestrator")
    app.update_config(config)

    sanic.log.logger.handlers = []
    configure_logging(logging.getLogger("orchestrator"))

    app.ctx.cache = cachetools.LRUCache(maxsize=500)
    app.ctx.github_router = create_router()

    @app.listener("before_server_start")
    async def init(app, loop):
        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = aiohttp.ClientSession()

    @app.listener("after_server_stop")
    async def close(app, loop):
        await app.ctx.aiohttp_session.close()

    @app.get("/status")
    async def status(request):
        logger.debug("status check")
        return response.text("ok")

    @app.route("/webhook", methods=["POST"])
    async def github(request: Request):
        logger.debug("Webhook received")

        try:
            event = sansio.Event.from_http(
                request.headers, request.body, secret=app.config.GITHUB_WEBHOOK_SECRET
            )
        except gidgethub.ValidationFailure:
            logger.warning("Rejected webhook with invalid signature")
            return response.empty(401)

        await process_webhook(app, event)

        return response.empty(200)

    @app.get("/metrics")
    async def metrics(request):
        data = generate_latest(core.REGISTRY)
        return response.raw(data)

    return app
