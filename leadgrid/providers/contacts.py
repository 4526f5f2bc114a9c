from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import ProviderError, raise_for_provider_status

"""Contact-list provider (Apollo).

Saved lists of the `contacts` modality can be listed and fetched page by
page; every raw contact is flattened to the fields in CONTACT_FIELD_LABELS.
"""

__all__ = [
    "CONTACT_FIELD_LABELS",
    "PER_PAGE",
    "MAX_PAGES",
    "ContactList",
    "ApolloClient",
    "map_contact",
]

logger = logging.getLogger(__name__)

PER_PAGE = 100
MAX_PAGES = 500

# フィールド -> 列の表示名 (列マッピングのラベル)
CONTACT_FIELD_LABELS: dict[str, str] = {
    "first_name": "First Name",
    "last_name": "Last Name",
    "email": "Email",
    "title": "Title",
    "linkedin_url": "LinkedIn URL",
    "company_name": "Company Name",
    "company_website": "Company Website",
    "phone": "Phone",
    "location": "Location",
}


@dataclass(frozen=True)
class ContactList:
    id: str
    name: str
    count: int


def map_contact(raw: dict[str, Any]) -> dict[str, str]:
    account = raw.get("account") or {}
    phones = raw.get("phone_numbers") or []
    phone = (phones[0] or {}).get("raw_number") if phones else None
    location = raw.get("present_raw_address")
    if location is None:
        location = ", ".join(str(p) for p in (raw.get("city"), raw.get("state"), raw.get("country")) if p)
    return {
        "first_name": raw.get("first_name") or "",
        "last_name": raw.get("last_name") or "",
        "email": raw.get("email") or "",
        "title": raw.get("title") or "",
        "linkedin_url": raw.get("linkedin_url") or "",
        "company_name": raw.get("organization_name") or account.get("name") or "",
        "company_website": account.get("website_url") or "",
        "phone": phone or "",
        "location": location or "",
    }


class ApolloClient:
    provider = "apollo"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        *,
        base_url: str = "https://api.apollo.io/api/v1",
    ) -> None:
        if not api_key:
            raise ProviderError(self.provider, "APOLLO_API_KEY not configured")
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._headers = {"Cache-Control": "no-cache", "x-api-key": api_key}

    async def list_contact_lists(self) -> list[ContactList]:
        response = await self._client.get(f"{self.base_url}/labels", headers=self._headers)
        raise_for_provider_status(self.provider, response)
        data = response.json()
        lists = [
            ContactList(id=str(l["id"]), name=str(l.get("name") or ""), count=int(l.get("cached_count") or 0))
            for l in (data if isinstance(data, list) else [])
            if l.get("modality") == "contacts"
        ]
        return sorted(lists, key=lambda l: l.name.casefold())

    async def fetch_contacts(self, list_id: str) -> list[dict[str, str]]:
        contacts: list[dict[str, str]] = []
        page = 1
        total_pages = 1
        while page <= total_pages and page <= MAX_PAGES:
            response = await self._client.post(
                f"{self.base_url}/contacts/search",
                headers=self._headers,
                json={"contact_label_ids": [list_id], "per_page": PER_PAGE, "page": page},
            )
            raise_for_provider_status(self.provider, response)
            data = response.json()
            contacts.extend(map_contact(c) for c in data.get("contacts") or [])
            total_pages = (data.get("pagination") or {}).get("total_pages") or 1
            page += 1
        logger.debug("fetched %d contacts from list %s (%d pages)", len(contacts), list_id, page - 1)
        return contacts
