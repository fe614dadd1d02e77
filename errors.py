"""Error taxonomy for the chat gateway."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors surfaced by the gateway."""


class ProviderSetupError(GatewayError):
    """A provider failed before producing any fragment.

    Recoverable: the orchestrator fails over to the next provider.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderStreamError(GatewayError):
    """A provider failed while fragments were already flowing to the client."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class AllProvidersUnavailableError(GatewayError):
    """Every attempt in the failover budget raised a setup error."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__("All AI services are currently unavailable. Please try again later.")
        self.attempts = attempts
        self.last_error = last_error


class MalformedRequestError(GatewayError):
    """Invalid JSON body or missing/invalid `messages` field."""
