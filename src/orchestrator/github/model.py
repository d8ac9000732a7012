from typing import Annotated, Any, Dict, Literal, Optional, Union
import base64

import pydantic


class Model(pydantic.BaseModel):
    pass


class User(Model):
    login: str
    type: Optional[str] = None

    @property
    def is_bot(self) -> bool:
        return self.type == "Bot"


class Content(Model):
    type: str
    encoding: Literal["base64"]
    size: int
    name: str
    path: str
    content: str
    sha: str
    html_url: Optional[str] = None

    def decoded_content(self) -> str:
        if self.encoding != "base64":
            raise ValueError(f"Unknown encoding {self.encoding}")
        return base64.b64decode(self.content).decode()


class Repository(Model):
    id: int
    name: str
    full_name: str
    default_branch: Optional[str] = None
    url: Optional[str] = None
    html_url: Optional[str] = None
    private: Optional[bool] = None

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]


class PrConnection(Model):
    ref: str
    sha: Optional[str] = None


class PullRequest(Model):
    number: int
    state: Optional[Literal["open", "closed"]] = None
    merged: Optional[bool] = None
    mergeable: Optional[bool] = None
    mergeable_state: Optional[str] = None
    base: PrConnection
    head: PrConnection
    html_url: Optional[str] = None

    def __str__(self) -> str:
        return f"PR(#{self.number})"


class Issue(Model):
    number: int
    pull_request: Optional[Dict[str, Any]] = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class Comment(Model):
    id: int
    body: Optional[str] = None


class PrFile(Model):
    sha: Optional[str] = None
    filename: str
    status: Literal[
        "added", "removed", "modified", "renamed", "copied", "changed", "unchanged"
    ]


class PullRequestEvent(Model):
    kind: Literal["pull_request"] = "pull_request"
    action: str
    pull_request: PullRequest
    repository: Repository
    sender: Optional[User] = None

    @property
    def is_merged_into_default_branch(self) -> bool:
        return (
            self.action == "closed"
            and bool(self.pull_request.merged)
            and self.pull_request.base.ref == self.repository.default_branch
        )


class IssueCommentEvent(Model):
    kind: Literal["issue_comment"] = "issue_comment"
    action: Optional[str] = None
    issue: Issue
    comment: Comment
    repository: Repository
    sender: Optional[User] = None


GitHubEvent = Annotated[
    Union[PullRequestEvent, IssueCommentEvent], pydantic.Field(discriminator="kind")
]
