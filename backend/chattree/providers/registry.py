"""Provider registry: stores configured LLM provider instances.

One registry is built at app startup and handed to the services that need it;
nothing in the generation core looks providers up on its own.
"""

from chattree.providers.base import LLMProvider


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: dict[str, LLMProvider] = {}

    def register(self, provider: LLMProvider) -> None:
        """Register a provider instance by name."""
        self._providers[provider.name] = provider

    def get(self, name: str) -> LLMProvider:
        """Get a registered provider by name. Raises ProviderNotFoundError if not found."""
        try:
            return self._providers[name]
        except KeyError:
            available = ", ".join(self._providers.keys()) or "(none)"
            raise ProviderNotFoundError(
                f"Provider '{name}' not registered. Available: {available}"
            )

    def names(self) -> list[str]:
        """Return names of all registered providers."""
        return list(self._providers.keys())

    def clear(self) -> None:
        self._providers.clear()


class ProviderNotFoundError(Exception):
    pass
