"""Tool interface for the tool step."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class ToolResult(BaseModel):
    output: str
    display: bool = True
    files: list[bytes] = Field(default_factory=list)  # stored and attached to the message


class Tool(ABC):
    name: str
    description: str = ""
    input_schema: dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    async def call(self, parameters: dict[str, Any]) -> ToolResult:
        ...

    def spec(self) -> dict[str, Any]:
        """Description handed to the backend so it can choose a call."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }
