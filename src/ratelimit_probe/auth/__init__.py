"""Bearer-token providers."""

from ratelimit_probe.auth.azure import AzureDeviceCodeTokenProvider, resource_for_url
from ratelimit_probe.auth.base import (
    StaticTokenProvider,
    TokenProvider,
    TokenProviderError,
    TokenUsageError,
)

__all__ = [
    "AzureDeviceCodeTokenProvider",
    "StaticTokenProvider",
    "TokenProvider",
    "TokenProviderError",
    "TokenUsageError",
    "resource_for_url",
]
