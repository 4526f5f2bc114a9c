from __future__ import annotations

from dataclasses import dataclass

import httpx

from .errors import ProviderError, raise_for_provider_status

__all__ = [
    "ValidationResult",
    "ZeroBounceClient",
]


@dataclass(frozen=True)
class ValidationResult:
    status: str
    sub_status: str = ""

    def as_cell_value(self) -> str:
        """`status` or `status (sub_status)`; a missing status reads as `unknown`."""
        value = self.status or "unknown"
        if self.sub_status:
            value = f"{value} ({self.sub_status})"
        return value


class ZeroBounceClient:
    provider = "zerobounce"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        *,
        base_url: str = "https://api.zerobounce.net/v2",
    ) -> None:
        if not api_key:
            raise ProviderError(self.provider, "ZEROBOUNCE_API_KEY not configured")
        self._client = client
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def validate(self, email: str) -> ValidationResult:
        response = await self._client.get(
            f"{self.base_url}/validate",
            params={"api_key": self._api_key, "email": email, "ip_address": ""},
        )
        raise_for_provider_status(self.provider, response)
        data = response.json()
        if data.get("error"):
            raise ProviderError(self.provider, str(data["error"]))
        return ValidationResult(
            status=str(data.get("status") or ""),
            sub_status=str(data.get("sub_status") or ""),
        )
