"""Search backend contract used by the web search step."""

from abc import ABC, abstractmethod

from chattree.models import WebSearchSource


class SearchBackend(ABC):
    """Runs one web query and returns ranked results, best first."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def search(self, query: str, *, limit: int = 5) -> list[WebSearchSource]:
        """Raises SearchBackendError when the backend fails."""
        ...


class SearchBackendError(Exception):
    pass
