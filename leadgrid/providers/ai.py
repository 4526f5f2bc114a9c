from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from ..config.loader import ProviderSettings
from ..models.workspace import OutputType, TableType
from .errors import ProviderError, raise_for_provider_status

"""Text-generation providers used for AI column enrichment.

One request per row: the row context (column name -> value), the column's
prompt and its output type go in; a single stripped string comes out.
"""

__all__ = [
    "AI_MODELS",
    "DEFAULT_MODEL",
    "MAX_TOKENS",
    "NOT_AVAILABLE",
    "EnrichmentRequest",
    "TextGenerator",
    "PerplexityClient",
    "AnthropicClient",
    "build_system_prompt",
    "build_user_message",
    "create_text_generator",
]

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonar"
MAX_TOKENS = 200
NOT_AVAILABLE = "N/A"
ANTHROPIC_VERSION = "2023-06-01"

# 表示名 -> (プロバイダ, API 上のモデル ID)
AI_MODELS: dict[str, tuple[str, str]] = {
    "sonar": ("perplexity", "sonar"),
    "sonar-pro": ("perplexity", "sonar-pro"),
    "claude-sonnet": ("anthropic", "claude-sonnet-4-20250514"),
}


@dataclass(frozen=True)
class EnrichmentRequest:
    prompt: str
    output_type: OutputType
    context: dict[str, str] = field(default_factory=dict)
    table_type: TableType = TableType.PEOPLE


class TextGenerator(Protocol):
    async def generate(self, request: EnrichmentRequest) -> str: ...


def build_system_prompt(output_type: OutputType, table_type: TableType) -> str:
    return (
        "You are a data enrichment assistant. You will be given context about a "
        f"{table_type.value} record and must answer the user's question about it.\n"
        "\n"
        "Rules:\n"
        f"- Output type is: {output_type.value}\n"
        '- For "text": respond with a concise text value (1-3 words ideal, max 1 sentence)\n'
        '- For "number": respond with ONLY a number, no units or text\n'
        '- For "boolean": respond with ONLY "true" or "false"\n'
        "- Respond with ONLY the value. No explanations, no prefixes, no quotes.\n"
        f'- If you cannot determine the answer, respond with "{NOT_AVAILABLE}"'
    )


def build_user_message(request: EnrichmentRequest) -> str:
    context = json.dumps(request.context, indent=2, ensure_ascii=False)
    return f"Here is the data for this record:\n{context}\n\nQuestion: {request.prompt}"


class PerplexityClient:
    """OpenAI-compatible chat completions (sonar / sonar-pro)."""

    provider = "perplexity"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        *,
        model: str = "sonar",
        base_url: str = "https://api.perplexity.ai",
    ) -> None:
        if not api_key:
            raise ProviderError(self.provider, "PERPLEXITY_API_KEY not configured")
        self._client = client
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def generate(self, request: EnrichmentRequest) -> str:
        response = await self._client.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "model": self.model,
                "max_tokens": MAX_TOKENS,
                "messages": [
                    {"role": "system", "content": build_system_prompt(request.output_type, request.table_type)},
                    {"role": "user", "content": build_user_message(request)},
                ],
            },
        )
        raise_for_provider_status(self.provider, response)
        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        return (content or NOT_AVAILABLE).strip()


class AnthropicClient:
    """Anthropic messages API (claude-sonnet)."""

    provider = "anthropic"

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        *,
        model: str = AI_MODELS["claude-sonnet"][1],
        base_url: str = "https://api.anthropic.com",
    ) -> None:
        if not api_key:
            raise ProviderError(self.provider, "ANTHROPIC_API_KEY not configured")
        self._client = client
        self._api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def generate(self, request: EnrichmentRequest) -> str:
        response = await self._client.post(
            f"{self.base_url}/v1/messages",
            headers={"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION},
            json={
                "model": self.model,
                "max_tokens": MAX_TOKENS,
                "system": build_system_prompt(request.output_type, request.table_type),
                "messages": [{"role": "user", "content": build_user_message(request)}],
            },
        )
        raise_for_provider_status(self.provider, response)
        blocks = response.json().get("content") or []
        text = next((b.get("text") for b in blocks if b.get("type") == "text"), None)
        return text.strip() if text else NOT_AVAILABLE


def create_text_generator(
    model: str, settings: ProviderSettings, client: httpx.AsyncClient
) -> TextGenerator:
    """Build the generator for a model name (`sonar`, `sonar-pro`, `claude-sonnet`).

    Raises:
        ProviderError: unknown model or missing API key
    """
    if model not in AI_MODELS:
        raise ProviderError("ai", f"unknown model: {model}")
    provider, model_id = AI_MODELS[model]
    logger.debug("text generator: %s (%s)", model, provider)
    if provider == "perplexity":
        return PerplexityClient(
            client, settings.perplexity_api_key, model=model_id, base_url=settings.perplexity_base_url
        )
    return AnthropicClient(
        client, settings.anthropic_api_key, model=model_id, base_url=settings.anthropic_base_url
    )
