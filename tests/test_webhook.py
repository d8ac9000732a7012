import base64
import http
from types import SimpleNamespace

import aiohttp
import gidgethub
import pytest
from gidgethub.sansio import Event

from orchestrator import config
from orchestrator.commands import HELP_TEXT
from orchestrator.exceptions import CollaboratorError
from orchestrator.github import create_router, get_config_from_repo
from orchestrator.github.model import Content
from orchestrator.metric import error_counter, webhook_skipped_counter
from orchestrator.web import process_webhook

from test_events import make_issue_comment_payload, make_pull_request_payload

DIGGER_YML = """
projects:
  - name: foo
    dir: envs/foo
  - name: bar
    dir: envs/bar
    workflow: missing
"""


class _FakeApi:
    def __init__(self, files, digger_yml=DIGGER_YML, missing_config=False):
        self.files = files
        self.digger_yml = digger_yml
        self.missing_config = missing_config
        self.comments = []

    async def get_content(self, path, ref=None):
        if self.missing_config:
            raise gidgethub.BadRequest(http.HTTPStatus.NOT_FOUND)
        return Content(
            type="file",
            encoding="base64",
            size=len(self.digger_yml),
            name=path,
            path=path,
            content=base64.b64encode(self.digger_yml.encode()).decode(),
            sha="c" * 40,
        )

    async def get_changed_files(self, pr_number):
        return self.files

    async def publish_comment(self, pr_number, body):
        self.comments.append((pr_number, body))


def make_app():
    return SimpleNamespace(ctx=SimpleNamespace(github_router=create_router()))


def make_event(name, payload):
    return Event(payload, event=name, delivery_id="delivery-1")


@pytest.fixture(autouse=True)
def _config(monkeypatch):
    monkeypatch.setattr(config, "DRY_RUN", False)
    monkeypatch.setattr(config, "OVERRIDE_CONFIG", None)
    monkeypatch.setattr(config, "REPO_ALLOWLIST", None)


@pytest.mark.asyncio
async def test_pull_request_posts_jobs_comment():
    api = _FakeApi(files=["envs/foo/main.tf"])

    await process_webhook(
        make_app(), make_event("pull_request", make_pull_request_payload()), api=api
    )

    assert len(api.comments) == 1
    pr_number, body = api.comments[0]
    assert pr_number == 7
    assert "foo" in body
    assert "`digger plan`" in body


@pytest.mark.asyncio
async def test_comment_help():
    api = _FakeApi(files=["envs/foo/main.tf"])

    await process_webhook(
        make_app(),
        make_event("issue_comment", make_issue_comment_payload("digger help")),
        api=api,
    )

    assert api.comments == [(12, HELP_TEXT)]


@pytest.mark.asyncio
async def test_error_is_reported_as_comment():
    api = _FakeApi(files=["envs/bar/main.tf"])
    before = error_counter.labels(context="ConfigurationError")._value.get()

    await process_webhook(
        make_app(),
        make_event("issue_comment", make_issue_comment_payload("digger plan")),
        api=api,
    )

    assert api.comments == [
        (12, ":x: failed to find workflow config 'missing' for project 'bar'")
    ]
    assert error_counter.labels(context="ConfigurationError")._value.get() == before + 1


@pytest.mark.asyncio
async def test_missing_config_is_ignored():
    api = _FakeApi(files=["envs/foo/main.tf"], missing_config=True)

    await process_webhook(
        make_app(), make_event("pull_request", make_pull_request_payload()), api=api
    )

    assert api.comments == []


@pytest.mark.asyncio
async def test_dry_run_does_not_comment(monkeypatch):
    monkeypatch.setattr(config, "DRY_RUN", True)
    api = _FakeApi(files=["envs/foo/main.tf"])

    await process_webhook(
        make_app(), make_event("pull_request", make_pull_request_payload()), api=api
    )

    assert api.comments == []


@pytest.mark.asyncio
async def test_skipped_events():
    api = _FakeApi(files=["envs/foo/main.tf"])
    app = make_app()

    before = webhook_skipped_counter.labels(event="push")._value.get()
    await process_webhook(app, make_event("push", {"ref": "refs/heads/main"}), api=api)
    assert webhook_skipped_counter.labels(event="push")._value.get() == before + 1

    await process_webhook(
        app, make_event("pull_request", make_pull_request_payload("edited")), api=api
    )

    payload = make_issue_comment_payload("digger plan")
    payload["sender"] = {"login": "digger[bot]", "type": "Bot"}
    await process_webhook(app, make_event("issue_comment", payload), api=api)

    payload = make_issue_comment_payload("digger plan")
    del payload["issue"]["pull_request"]
    await process_webhook(app, make_event("issue_comment", payload), api=api)

    payload = make_issue_comment_payload("digger plan")
    payload["action"] = "edited"
    await process_webhook(app, make_event("issue_comment", payload), api=api)

    assert api.comments == []


@pytest.mark.asyncio
async def test_repo_allowlist(monkeypatch):
    monkeypatch.setattr(config, "REPO_ALLOWLIST", ["org/other"])
    api = _FakeApi(files=["envs/foo/main.tf"])

    await process_webhook(
        make_app(), make_event("pull_request", make_pull_request_payload()), api=api
    )

    assert api.comments == []


@pytest.mark.asyncio
async def test_get_config_from_repo_override(tmp_path, monkeypatch):
    path = tmp_path / "digger.yml"
    path.write_text("projects:\n  - name: local\n    dir: .\n")
    monkeypatch.setattr(config, "OVERRIDE_CONFIG", str(path))

    digger_config = await get_config_from_repo(_FakeApi(files=[]))
    assert [p.name for p in digger_config.projects] == ["local"]


@pytest.mark.asyncio
async def test_get_config_from_repo_server_error():
    class _BrokenApi(_FakeApi):
        async def get_content(self, path, ref=None):
            raise gidgethub.BadRequest(http.HTTPStatus.FORBIDDEN)

    with pytest.raises(CollaboratorError):
        await get_config_from_repo(_BrokenApi(files=[]))


@pytest.mark.asyncio
async def test_get_config_from_repo_connection_error():
    class _BrokenApi(_FakeApi):
        async def get_content(self, path, ref=None):
            raise aiohttp.ClientConnectionError("reset")

    with pytest.raises(CollaboratorError, match="reset"):
        await get_config_from_repo(_BrokenApi(files=[]))


@pytest.mark.asyncio
async def test_chat_comment_is_not_dispatched():
    api = _FakeApi(files=["envs/foo/main.tf"])
    before = webhook_skipped_counter.labels(event="issue_comment")._value.get()

    await process_webhook(
        make_app(),
        make_event(
            "issue_comment",
            make_issue_comment_payload("I ran terraform plan -p later, looks fine"),
        ),
        api=api,
    )

    assert api.comments == []
    assert (
        webhook_skipped_counter.labels(event="issue_comment")._value.get()
        == before + 1
    )


@pytest.mark.asyncio
async def test_event_without_repository_is_skipped():
    api = _FakeApi(files=["envs/foo/main.tf"])
    payload = make_issue_comment_payload("digger plan")
    del payload["repository"]
    before = webhook_skipped_counter.labels(event="issue_comment")._value.get()

    await process_webhook(make_app(), make_event("issue_comment", payload), api=api)

    assert api.comments == []
    assert (
        webhook_skipped_counter.labels(event="issue_comment")._value.get()
        == before + 1
    )
