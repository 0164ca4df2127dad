"""
toolcore.tools.classify - Keyword Classification Tables

Heuristics for tool categories, danger flags, required arguments and
connection-failure detection. Kept apart from the supervisor and the
coordinator so the tables can be extended without touching control flow.

These are substring matches over arbitrary provider-supplied text and will
misclassify some tools; callers must treat the results as hints.
"""

from collections.abc import Mapping, Sequence

# Checked in order; first match wins.
CATEGORY_KEYWORDS: Sequence[tuple[str, Sequence[str]]] = (
    ("filesystem", ("file", "read", "write", "directory")),
    ("web", ("web", "http", "url", "fetch")),
    ("search", ("search", "query")),
    ("version-control", ("git", "repo", "commit")),
)
DEFAULT_CATEGORY = "general"

DANGEROUS_KEYWORDS: Sequence[str] = (
    "delete",
    "remove",
    "destroy",
    "kill",
    "terminate",
    "format",
    "wipe",
    "clear",
    "reset",
    "drop",
    "execute",
    "run",
    "shell",
    "command",
    "script",
)

CONNECTION_ERROR_KEYWORDS: Sequence[str] = (
    "connection",
    "timeout",
    "timed out",
    "refused",
    "econnrefused",
    "not found",
    "enotfound",
    "closed",
    "broken pipe",
    "socket",
)

CONNECTION_ERROR_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    BrokenPipeError,
    EOFError,
)

# Tool-name keyword -> argument that must be present
REQUIRED_ARGUMENTS: Mapping[str, str] = {
    "file": "path",
    "search": "query",
}


def _category_for(text: str) -> str | None:
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def categorize_tool(raw_name: str, description: str | None = None) -> str:
    """Classify a tool by its raw name, falling back to its description."""
    category = _category_for(raw_name.lower())
    if category is None and description:
        category = _category_for(description.lower())
    return category or DEFAULT_CATEGORY


def is_dangerous_tool(raw_name: str, description: str | None = None) -> bool:
    """Flag tools whose name or description mentions a destructive verb."""
    text = f"{raw_name} {description or ''}".lower()
    return any(keyword in text for keyword in DANGEROUS_KEYWORDS)


def required_arguments(tool_name: str) -> dict[str, str]:
    """Arguments a tool is assumed to need, inferred from its name.

    Returns:
        Mapping of matched name keyword -> required argument name
    """
    name = tool_name.lower()
    return {keyword: arg for keyword, arg in REQUIRED_ARGUMENTS.items() if keyword in name}


def is_connection_error(error: BaseException | str | None) -> bool:
    """
    Decide whether a failure means the provider connection is broken.

    Exception types from the builtin connection/timeout family always count;
    otherwise the message is matched against CONNECTION_ERROR_KEYWORDS.
    """
    if error is None:
        return False
    if isinstance(error, CONNECTION_ERROR_TYPES):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in CONNECTION_ERROR_KEYWORDS)
