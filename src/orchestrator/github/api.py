from contextlib import contextmanager
import logging
from typing import Iterator, List, Optional, Protocol

import aiohttp
import gidgethub
from gidgethub.abc import GitHubAPI

from orchestrator.exceptions import CollaboratorError
from orchestrator.github.model import Comment, Content, PrFile, PullRequest
from orchestrator.metric import record_api_call

logger = logging.getLogger("orchestrator")

# https://docs.github.com/en/graphql/reference/enums#mergestatestatus
MERGEABLE_STATES = frozenset({"clean", "unstable", "has_hooks"})

MERGE_METHOD = "squash"
MERGE_COMMIT_MESSAGE = "auto-merge"


def is_mergeable_state(mergeable_state: str) -> bool:
    accepted = mergeable_state.lower() in MERGEABLE_STATES
    if not accepted:
        logger.info("Pull request mergeable state is %s", mergeable_state)
    return accepted


class PullRequestService(Protocol):
    async def get_changed_files(self, pr_number: int) -> List[str]:
        ...

    async def publish_comment(self, pr_number: int, body: str) -> None:
        ...

    async def get_comments(self, pr_number: int) -> List[Comment]:
        ...

    async def edit_comment(self, comment_id: int, body: str) -> None:
        ...

    async def set_status(self, pr_number: int, status: str, context: str) -> None:
        ...

    async def get_combined_pull_request_status(self, pr_number: int) -> str:
        ...

    async def merge_pull_request(self, pr_number: int) -> None:
        ...

    async def is_mergeable(self, pr_number: int) -> bool:
        ...

    async def is_merged(self, pr_number: int) -> bool:
        ...

    async def is_closed(self, pr_number: int) -> bool:
        ...

    async def get_user_teams(self, organisation: str, user: str) -> List[str]:
        ...


@contextmanager
def collaborator_call(description: str) -> Iterator[None]:
    try:
        yield
    except (gidgethub.GitHubException, aiohttp.ClientError) as e:
        raise CollaboratorError(f"{description}: {e}") from e


class API:
    gh: GitHubAPI
    owner: str
    repo_name: str

    call_count: int

    def __init__(self, gh: GitHubAPI, owner: str, repo_name: str):
        self.gh = gh
        self.owner = owner
        self.repo_name = repo_name
        self.call_count = 0

    @classmethod
    def for_repository(cls, gh: GitHubAPI, full_name: str) -> "API":
        owner, repo_name = full_name.split("/", 1)
        return cls(gh, owner, repo_name)

    @property
    def repo_url(self) -> str:
        return f"/repos/{self.owner}/{self.repo_name}"

    def _count(self, url: str) -> None:
        self.call_count += 1
        record_api_call(url)

    async def get_pull(self, pr_number: int) -> PullRequest:
        url = f"{self.repo_url}/pulls/{pr_number}"
        self._count(url)
        logger.debug("Get pull %s", url)
        with collaborator_call(f"error getting pull request #{pr_number}"):
            return PullRequest.model_validate(await self.gh.getitem(url))

    async def get_changed_files(self, pr_number: int) -> List[str]:
        url = f"{self.repo_url}/pulls/{pr_number}/files"
        self._count(url)
        logger.debug("Getting files for PR #%d %s", pr_number, url)
        with collaborator_call("error getting pull request files"):
            return [
                PrFile.model_validate(item).filename
                async for item in self.gh.getiter(url)
            ]

    async def get_content(self, path: str, ref: Optional[str] = None) -> Content:
        url = f"{self.repo_url}/contents/{path}"
        if ref is not None:
            url += f"?ref={ref}"
        self._count(url)
        logger.debug("Get file content: %s", url)
        return Content.model_validate(await self.gh.getitem(url))

    async def publish_comment(self, pr_number: int, body: str) -> None:
        url = f"{self.repo_url}/issues/{pr_number}/comments"
        self._count(url)
        logger.debug("Publishing comment on #%d", pr_number)
        with collaborator_call(f"error publishing comment on #{pr_number}"):
            await self.gh.post(url, data={"body": body})

    async def get_comments(self, pr_number: int) -> List[Comment]:
        url = f"{self.repo_url}/issues/{pr_number}/comments?per_page=100"
        self._count(url)
        with collaborator_call(f"error getting comments of #{pr_number}"):
            return [Comment.model_validate(item) async for item in self.gh.getiter(url)]

    async def edit_comment(self, comment_id: int, body: str) -> None:
        url = f"{self.repo_url}/issues/comments/{comment_id}"
        self._count(url)
        logger.debug("Editing comment %d", comment_id)
        with collaborator_call(f"error editing comment {comment_id}"):
            await self.gh.patch(url, data={"body": body})

    async def set_status(self, pr_number: int, status: str, context: str) -> None:
        pr = await self.get_pull(pr_number)
        url = f"{self.repo_url}/statuses/{pr.head.sha}"
        self._count(url)
        logger.debug("Setting status %s (%s) on %s", status, context, pr.head.sha)
        with collaborator_call(f"error setting status on #{pr_number}"):
            await self.gh.post(
                url,
                data={"state": status, "context": context, "description": context},
            )

    async def get_combined_pull_request_status(self, pr_number: int) -> str:
        pr = await self.get_pull(pr_number)
        url = f"{self.repo_url}/commits/{pr.head.sha}/status"
        self._count(url)
        with collaborator_call("error getting combined status"):
            data = await self.gh.getitem(url)
        return data["state"]

    async def merge_pull_request(self, pr_number: int) -> None:
        pr = await self.get_pull(pr_number)
        url = f"{self.repo_url}/pulls/{pr_number}/merge"
        self._count(url)
        logger.info("Merging #%d at %s", pr_number, pr.head.sha)
        with collaborator_call(f"error merging #{pr_number}"):
            await self.gh.put(
                url,
                data={
                    "commit_message": MERGE_COMMIT_MESSAGE,
                    "merge_method": MERGE_METHOD,
                    "sha": pr.head.sha,
                },
            )

    async def is_mergeable(self, pr_number: int) -> bool:
        pr = await self.get_pull(pr_number)
        return bool(pr.mergeable) and is_mergeable_state(pr.mergeable_state or "")

    async def is_merged(self, pr_number: int) -> bool:
        pr = await self.get_pull(pr_number)
        return bool(pr.merged)

    async def is_closed(self, pr_number: int) -> bool:
        pr = await self.get_pull(pr_number)
        return pr.state == "closed"

    async def get_user_teams(self, organisation: str, user: str) -> List[str]:
        url = f"/orgs/{organisation}/teams"
        self._count(url)
        teams = []
        with collaborator_call(f"failed to list github teams of {organisation}"):
            async for team in self.gh.getiter(url):
                members_url = f"/orgs/{organisation}/teams/{team['slug']}/members"
                self._count(members_url)
                async for member in self.gh.getiter(members_url):
                    if member["login"] == user:
                        teams.append(team["name"])
                        break
        return teams
