"""Tool registry: the tools a deployment offers, filtered per request."""

from chattree.tools.base import Tool


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def enabled(self, preferences: dict[str, bool]) -> list[Tool]:
        """Tools the caller switched on. Unknown names are ignored."""
        return [tool for name, tool in self._tools.items() if preferences.get(name)]
