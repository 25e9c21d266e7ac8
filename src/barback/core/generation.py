"""Generation pipeline client: prompt in, reply text and token usage out."""

import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

import httpx

from barback.core.errors import ProviderUnavailableError
from barback.core.logging import get_logger
from barback.models.enums import MessageRole

logger = get_logger(__name__)

GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "30"))

PROVIDER_NAME = "generation"

# complexity -> (model, generation config)
MODEL_TIERS: dict[str, tuple[str, dict[str, Any]]] = {
    "low": (
        "gemini-2.5-flash-lite",
        {"temperature": 0.7, "topP": 0.8, "topK": 40, "maxOutputTokens": 1024},
    ),
    "medium": (
        "gemini-2.5-flash",
        {"temperature": 0.8, "topP": 0.9, "topK": 40, "maxOutputTokens": 2048},
    ),
    "high": (
        "gemini-2.5-pro",
        {"temperature": 0.9, "topP": 0.95, "topK": 40, "maxOutputTokens": 4096},
    ),
}


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


class Generator(Protocol):
    async def generate(
        self,
        prompt: str,
        history: Sequence[tuple[str, str]] = (),
        complexity: str = "low",
    ) -> GenerationResult:
        ...


class GeminiGenerator:
    """Gemini style generateContent REST API over httpx."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = GEMINI_BASE_URL,
        api_key: str = GEMINI_API_KEY,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=GEMINI_TIMEOUT_SECONDS)
        self._api_key = api_key

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _contents(prompt: str, history: Sequence[tuple[str, str]]) -> list[dict[str, Any]]:
        contents = []
        for role, text in history:
            api_role = "model" if role == MessageRole.ASSISTANT.value else "user"
            contents.append({"role": api_role, "parts": [{"text": text}]})
        contents.append({"role": "user", "parts": [{"text": prompt}]})
        return contents

    async def generate(
        self,
        prompt: str,
        history: Sequence[tuple[str, str]] = (),
        complexity: str = "low",
    ) -> GenerationResult:
        model, config = MODEL_TIERS.get(complexity, MODEL_TIERS["low"])
        path = f"/v1beta/models/{model}:generateContent"
        body = {"contents": self._contents(prompt, history), "generationConfig": config}

        try:
            response = await self._client.post(
                path, json=body, headers={"x-goog-api-key": self._api_key}
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME, "request failed", details={"model": model, "error": type(exc).__name__}
            ) from exc

        if not response.is_success:
            raise ProviderUnavailableError(
                PROVIDER_NAME,
                f"model {model} returned {response.status_code}",
                details={"model": model, "status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME, "response was not JSON", details={"model": model}
            ) from exc
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts).strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderUnavailableError(
                PROVIDER_NAME, "response had no candidates", details={"model": model}
            ) from exc

        usage_metadata = data.get("usageMetadata") or {}
        usage = {
            "input_tokens": usage_metadata.get("promptTokenCount", 0),
            "output_tokens": usage_metadata.get("candidatesTokenCount", 0),
            "total_tokens": usage_metadata.get("totalTokenCount", 0),
        }
        logger.debug("generation.completed", model=model, **usage)
        return GenerationResult(text=text, model=model, usage=usage)
