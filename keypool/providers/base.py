from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from keypool.credentials.models import FailureReason


@dataclass(frozen=True)
class ProviderResponse:
    """Standardized response from any AI provider."""
    content: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    raw_metadata: dict[str, Any]


class ProviderCallError(Exception):
    """An external call failed in a way that says something about the key used."""

    def __init__(self, reason: FailureReason, message: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(message)


def classify_status(status_code: int) -> FailureReason:
    if status_code == 429:
        return FailureReason.RATE_LIMITED
    if status_code in (401, 403):
        return FailureReason.AUTH_REJECTED
    if status_code in (408, 504):
        return FailureReason.TIMEOUT
    return FailureReason.UNKNOWN


class BaseProvider(ABC):
    """Abstract interface for AI providers. One instance per pooled key."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def generate_completion(
        self,
        model: str,
        messages: list[dict[str, str]],
        **kwargs: Any,
    ) -> ProviderResponse:
        """
        Call the provider and return a standardized response.
        Failures surface as ProviderCallError so the pool can account for them.
        """
        ...

    async def close(self) -> None:
        """Cleanup resources (e.g., httpx client)."""
        pass
