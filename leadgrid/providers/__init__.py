from __future__ import annotations

import httpx

from ..config.loader import ProviderSettings
from .ai import AnthropicClient, EnrichmentRequest, PerplexityClient, TextGenerator, create_text_generator
from .contacts import CONTACT_FIELD_LABELS, ApolloClient, ContactList
from .email_validation import ValidationResult, ZeroBounceClient
from .errors import ProviderError

__all__ = [
    "AnthropicClient",
    "ApolloClient",
    "CONTACT_FIELD_LABELS",
    "ContactList",
    "EnrichmentRequest",
    "PerplexityClient",
    "ProviderError",
    "TextGenerator",
    "ValidationResult",
    "ZeroBounceClient",
    "create_http_client",
    "create_text_generator",
]


def create_http_client(settings: ProviderSettings) -> httpx.AsyncClient:
    t = settings.request_timeout_seconds
    return httpx.AsyncClient(timeout=httpx.Timeout(t, connect=t, read=t, write=t))
