"""Google Gemini provider via httpx (generateContent REST endpoint)."""
from typing import Any

import httpx

from keypool.config import settings
from keypool.credentials.models import FailureReason
from keypool.providers.base import (
    BaseProvider,
    ProviderCallError,
    ProviderResponse,
    classify_status,
)


def to_gemini_payload(messages: list[dict[str, str]], **kwargs: Any) -> dict[str, Any]:
    """OpenAI-style messages → Gemini contents + systemInstruction."""
    system_parts: list[dict[str, str]] = []
    contents: list[dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role", "user")
        if role == "system":
            system_parts.append({"text": msg["content"]})
            continue
        contents.append({
            "role": "model" if role == "assistant" else "user",
            "parts": [{"text": msg["content"]}],
        })

    generation_config: dict[str, Any] = {
        "temperature": kwargs.get("temperature", 0.7),
        "topK": 40,
        "topP": 0.95,
        "maxOutputTokens": kwargs.get("max_tokens", 1024),
    }
    payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
    if system_parts:
        payload["systemInstruction"] = {"parts": system_parts}
    return payload


class GeminiProvider(BaseProvider):
    def __init__(self, api_key: str, timeout: float | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=settings.gemini_base_url,
            headers={"x-goog-api-key": api_key, "content-type": "application/json"},
            timeout=timeout or settings.provider_timeout_seconds,
        )

    @property
    def provider_name(self) -> str:
        return "gemini"

    async def generate_completion(
        self,
        model: str,
        messages: list[dict[str, str]],
        **kwargs: Any,
    ) -> ProviderResponse:
        payload = to_gemini_payload(messages, **kwargs)
        try:
            response = await self._client.post(f"/models/{model}:generateContent", json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderCallError(FailureReason.TIMEOUT, f"Gemini request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise ProviderCallError(FailureReason.UNKNOWN, f"Gemini transport error: {exc}") from exc

        if response.is_error:
            raise ProviderCallError(
                classify_status(response.status_code),
                f"Gemini returned {response.status_code}: {response.text[:512]}",
                status_code=response.status_code,
            )

        data = response.json()
        candidates = data.get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        text = "".join(p.get("text", "") for p in parts)

        usage = data.get("usageMetadata", {})
        input_tokens = usage.get("promptTokenCount", 0)
        output_tokens = usage.get("candidatesTokenCount", 0)
        return ProviderResponse(
            content=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage.get("totalTokenCount", input_tokens + output_tokens),
            raw_metadata=data,
        )

    async def close(self) -> None:
        await self._client.aclose()
