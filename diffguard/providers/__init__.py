"""Provider adapter registry, keyed by the repository's provider tag."""

from diffguard.errors import ScanConfigurationError

from .azure import AzureDevOpsAdapter
from .base import ProviderAdapter, close_client
from .bitbucket import BitbucketAdapter
from .github import GitHubAdapter

_ADAPTERS: dict[str, ProviderAdapter] = {
    "github": GitHubAdapter(),
    "bitbucket": BitbucketAdapter(),
    "azure": AzureDevOpsAdapter(),
}

PROVIDERS: tuple[str, ...] = tuple(_ADAPTERS)


def get_adapter(provider: str) -> ProviderAdapter:
    """Return the adapter for *provider*; unknown tags fail the scan."""
    adapter = _ADAPTERS.get((provider or "").lower())
    if adapter is None:
        raise ScanConfigurationError(f"Unsupported provider: {provider!r}")
    return adapter


__all__ = ["PROVIDERS", "ProviderAdapter", "close_client", "get_adapter"]
