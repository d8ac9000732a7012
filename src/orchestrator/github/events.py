from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping, Union

import pydantic
from gidgethub.sansio import Event

from orchestrator.exceptions import UnsupportedEventError
from orchestrator.github.model import GitHubEvent, IssueCommentEvent, PullRequestEvent

logger = logging.getLogger("orchestrator")

SUPPORTED_EVENTS = ("pull_request", "issue_comment")

_event_adapter = pydantic.TypeAdapter(GitHubEvent)


@dataclass(frozen=True)
class EventPackage:
    event: Union[PullRequestEvent, IssueCommentEvent]
    event_name: str
    actor: str
    repository: str


def classify_event(event: Any) -> Union[PullRequestEvent, IssueCommentEvent]:
    if isinstance(event, (PullRequestEvent, IssueCommentEvent)):
        return event
    raise UnsupportedEventError(type(event).__name__)


def target_pull_request_number(event: Any) -> int:
    event = classify_event(event)
    if isinstance(event, PullRequestEvent):
        return event.pull_request.number
    return event.issue.number


def parse_event(
    event_name: str, payload: Mapping[str, Any]
) -> Union[PullRequestEvent, IssueCommentEvent]:
    if event_name not in SUPPORTED_EVENTS:
        raise UnsupportedEventError(event_name)
    try:
        return _event_adapter.validate_python({**payload, "kind": event_name})
    except pydantic.ValidationError as e:
        logger.debug("Payload for %s does not validate: %s", event_name, e)
        raise UnsupportedEventError(event_name) from e


def event_package_from_payload(
    event_name: str, payload: Mapping[str, Any]
) -> EventPackage:
    event = parse_event(event_name, payload)
    actor = event.sender.login if event.sender is not None else ""
    return EventPackage(
        event=event,
        event_name=event_name,
        actor=actor,
        repository=event.repository.full_name,
    )


def event_package_from_webhook(event: Event) -> EventPackage:
    return event_package_from_payload(event.event, event.data)
