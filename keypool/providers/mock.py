from typing import Any

from keypool.credentials.models import FailureReason
from keypool.providers.base import BaseProvider, ProviderCallError, ProviderResponse

# Secrets with these prefixes make the mock fail like a real provider would.
_FAILING_SECRETS = {
    "mock-ratelimited": (FailureReason.RATE_LIMITED, 429),
    "mock-revoked": (FailureReason.AUTH_REJECTED, 403),
    "mock-timeout": (FailureReason.TIMEOUT, 408),
    "mock-broken": (FailureReason.UNKNOWN, 500),
}


class MockProvider(BaseProvider):
    """Deterministic mock provider for testing and development."""

    def __init__(self, api_key: str = "mock-key") -> None:
        self._api_key = api_key

    @property
    def provider_name(self) -> str:
        return "mock"

    async def generate_completion(
        self,
        model: str,
        messages: list[dict[str, str]],
        **kwargs: Any,
    ) -> ProviderResponse:
        for prefix, (reason, status) in _FAILING_SECRETS.items():
            if self._api_key.startswith(prefix):
                raise ProviderCallError(reason, f"mock failure: {reason.value}", status_code=status)

        # Deterministic token count based on input length
        input_chars = sum(len(m.get("content", "")) for m in messages)
        input_tokens = max(input_chars // 4, 10)
        output_tokens = input_tokens * 2

        return ProviderResponse(
            content=f"Mock response for model={model}",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            raw_metadata={"provider": "mock", "model": model},
        )
