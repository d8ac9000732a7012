import re
from typing import List

from orchestrator.exceptions import ParseError

SUPPORTED_COMMANDS = ("digger plan", "digger apply", "digger unlock", "digger lock")

HELP_COMMAND = "digger help"

HELP_TEXT = """\
### Digger commands

| Command | Description |
|---|---|
| `digger plan` | Run plan for all impacted projects |
| `digger apply` | Run apply for all impacted projects |
| `digger lock` | Lock all impacted projects |
| `digger unlock` | Unlock all impacted projects |

Options:
- `-p <project>`: only run for the named project
- `-w <workspace>`: override the project's workspace
"""

# flags must be standalone tokens, "-p" inside "my-project" is not a flag
_PROJECT_FLAG = re.compile(r"(?:^|\s)-p\s+(?!-)([\w\-]+)")
_WORKSPACE_FLAG = re.compile(r"(?:^|\s)-w(?=\s|$)(?:\s+(?!-)(\S+))?")


def parse_project_name(comment: str) -> str:
    match = _PROJECT_FLAG.search(comment)
    if match is None:
        return ""
    return match.group(1)


def parse_workspace(comment: str) -> str:
    matches = list(_WORKSPACE_FLAG.finditer(comment))

    if len(matches) == 0:
        return ""

    if len(matches) > 1:
        raise ParseError("more than one -w flag found")

    workspace = matches[0].group(1)
    if not workspace:
        raise ParseError("no value found after -w flag")

    return workspace


def normalize_comment(comment: str) -> str:
    return comment.lower().strip()


def match_commands(comment: str) -> List[str]:
    """Supported commands that prefix the comment, in vocabulary order."""
    normalized = normalize_comment(comment)
    return [c for c in SUPPORTED_COMMANDS if normalized.startswith(c)]


def is_help_comment(comment: str) -> bool:
    return HELP_COMMAND in comment
