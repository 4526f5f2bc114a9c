from __future__ import annotations

import httpx

__all__ = [
    "ProviderError",
    "raise_for_provider_status",
]


class ProviderError(Exception):
    """An external provider call failed or returned an unusable response."""

    def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    if response.status_code >= 400:
        raise ProviderError(
            provider,
            f"API error ({response.status_code}): {response.text}",
            status_code=response.status_code,
        )
