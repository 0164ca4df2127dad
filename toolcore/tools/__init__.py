"""
toolcore.tools - Tool Discovery and Namespacing

Architecture:
- models.py: ToolDescriptor, namespaced_name()
- classify.py: keyword tables (category, danger, required args, connection errors)
- catalog.py: ToolCatalog (descriptor building, TTL cache, name resolution)

Example Usage:
    >>> from toolcore.tools import ToolCatalog
    >>> server_id, raw_name = ToolCatalog.parse_tool_name("github.create_issue")
    >>> (server_id, raw_name)
    ('github', 'create_issue')
"""

from .catalog import ToolCatalog
from .classify import (
    categorize_tool,
    is_connection_error,
    is_dangerous_tool,
    required_arguments,
)
from .models import NAMESPACE_SEPARATOR, ToolDescriptor, namespaced_name

__all__ = [
    "NAMESPACE_SEPARATOR",
    "ToolCatalog",
    "ToolDescriptor",
    "categorize_tool",
    "is_connection_error",
    "is_dangerous_tool",
    "namespaced_name",
    "required_arguments",
]
