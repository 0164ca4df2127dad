"""
toolcore.tools.models - Tool Descriptor

A discoverable capability, namespaced by the server that exposes it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

NAMESPACE_SEPARATOR = "."


class ToolDescriptor(BaseModel):
    """
    Tool definition as exposed to callers.

    Descriptors are rebuilt wholesale on every discovery cycle and never
    patched field by field, so the model is frozen.

    Example:
        >>> tool = ToolDescriptor(
        ...     name="filesystem.read_file",
        ...     raw_name="read_file",
        ...     server_id="filesystem",
        ...     description="Read a file from disk",
        ...     category="filesystem",
        ... )
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Namespaced name: '{server_id}.{raw_name}'")
    raw_name: str = Field(..., description="Tool name as the provider knows it")
    server_id: str = Field(..., description="Connection that exposes this tool")
    description: str = Field(default="", description="What this tool does")
    input_schema: dict[str, Any] = Field(
        default_factory=dict, description="JSON schema for tool arguments"
    )
    category: str = Field(default="general", description="Heuristic tool category")
    dangerous: bool = Field(default=False, description="Heuristic destructive-action flag")
    requires_confirmation: bool = Field(default=True)

    def to_function_schema(self) -> dict[str, Any]:
        """Render as a function-calling schema keyed by the namespaced name."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema or {"type": "object", "properties": {}},
            },
        }


def namespaced_name(server_id: str, raw_name: str) -> str:
    return f"{server_id}{NAMESPACE_SEPARATOR}{raw_name}"
