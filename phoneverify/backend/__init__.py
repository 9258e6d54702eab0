"""Application backend client."""

from .client import BackendClient, ResendMethod, ResendResult

__all__ = [
    "BackendClient",
    "ResendMethod",
    "ResendResult",
]
