"""Provider registry.

Providers are ephemeral: one per acquired credential, closed after the call,
so a key's secret never outlives the request that leased it.
"""
from keypool.providers.base import BaseProvider
from keypool.providers.gemini import GeminiProvider
from keypool.providers.mock import MockProvider


def make_provider(name: str, api_key: str) -> BaseProvider:
    """Create an ephemeral provider bound to one pooled key."""
    if name == "gemini":
        return GeminiProvider(api_key=api_key)
    elif name == "mock":
        return MockProvider(api_key=api_key)
    else:
        raise ValueError(f"Unknown provider: {name}")


def infer_service(model: str) -> str:
    """Infer the pooled service from a model name."""
    if model.startswith("gemini-"):
        return "gemini"
    elif model.startswith("mock"):
        return "mock"
    else:
        return "gemini"  # default
