"""Identity provider clients for phone verification."""

from .challenge import PresolvedChallengeHandle, PresolvedChallengeProvider
from .identity_toolkit import (
    IdentityToolkitClient,
    ProviderAssertion,
    ProviderResponseError,
)

__all__ = [
    "IdentityToolkitClient",
    "PresolvedChallengeHandle",
    "PresolvedChallengeProvider",
    "ProviderAssertion",
    "ProviderResponseError",
]
