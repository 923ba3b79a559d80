from __future__ import annotations

import logging

from issuelink.core.errors import UnknownProvider
from issuelink.core.settings import Settings
from issuelink.providers.base import ProviderAdapter
from issuelink.providers.github import GitHubAdapter
from issuelink.providers.jira import JiraAdapter
from issuelink.providers.linear import LinearAdapter
from issuelink.providers.zendesk import ZendeskAdapter

logger = logging.getLogger(__name__)

PROVIDERS = ("github", "jira", "linear", "zendesk")


class ProviderRegistry:
    """Adapters keyed by provider tag. Dispatch is by tag only."""

    def __init__(self, adapters: dict[str, ProviderAdapter]):
        self._adapters = dict(adapters)

    def get(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get(provider.lower())
        if adapter is None:
            raise UnknownProvider(f"Unknown provider: {provider}", provider=provider)
        return adapter

def build_registry(settings: Settings) -> ProviderRegistry:
    timeout = settings.provider_timeout_seconds
    adapters: dict[str, ProviderAdapter] = {
        "github": GitHubAdapter(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            webhook_secret=settings.github_webhook_secret,
            timeout=timeout,
        ),
        "jira": JiraAdapter(
            client_id=settings.jira_client_id,
            client_secret=settings.jira_client_secret,
            webhook_secret=settings.jira_webhook_secret,
            timeout=timeout,
        ),
        "linear": LinearAdapter(
            client_id=settings.linear_client_id,
            client_secret=settings.linear_client_secret,
            webhook_secret=settings.linear_webhook_secret,
            timeout=timeout,
        ),
        "zendesk": ZendeskAdapter(
            subdomain=settings.zendesk_subdomain,
            client_id=settings.zendesk_client_id,
            client_secret=settings.zendesk_client_secret,
            webhook_secret=settings.zendesk_webhook_secret,
            timeout=timeout,
        ),
    }
    for name, adapter in adapters.items():
        if not adapter.is_configured():
            logger.warning("Provider %s is not configured (missing client id/secret)", name)
    return ProviderRegistry(adapters)
