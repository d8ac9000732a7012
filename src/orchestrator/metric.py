import re

from prometheus_client import Counter

webhook_counter = Counter(
    "orchestrator_num_webhook", "Total number of webhooks", labelnames=["event"]
)
webhook_skipped_counter = Counter(
    "orchestrator_num_webhook_skipped",
    "Total number of skipped webhooks",
    labelnames=["event"],
)

job_counter = Counter(
    "orchestrator_num_jobs",
    "Number of jobs synthesized from webhook events",
    labelnames=["event", "command"],
)

error_counter = Counter(
    "orchestrator_error_counter", "Total number of errors", labelnames=["context"]
)

api_call_count = Counter(
    "orchestrator_num_api_calls",
    "Total number of GitHub API calls",
    labelnames=["endpoint"],
)


def _normalize_api_endpoint(endpoint: str) -> str:
    if m := re.match(r"^/repos/[^/]+/[^/]+/(\w+)", endpoint):
        return m.group(1)
    if m := re.match(r"^/orgs/[^/]+/(\w+)", endpoint):
        return m.group(1)
    return endpoint


def record_api_call(endpoint: str) -> None:
    api_call_count.labels(endpoint=_normalize_api_endpoint(endpoint)).inc()
