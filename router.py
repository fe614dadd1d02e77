"""Round-robin provider selection and setup-time failover."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

from errors import AllProvidersUnavailableError
from models import ChatMessage
from providers import FragmentStream, ProviderAdapter

log = logging.getLogger("chat_gateway")


class RotationSelector:
    """Cyclic cursor over a fixed, non-empty list of providers."""

    def __init__(self, providers: Sequence[ProviderAdapter]) -> None:
        if not providers:
            raise ValueError("RotationSelector requires at least one provider")
        self._providers = tuple(providers)
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def providers(self) -> tuple[ProviderAdapter, ...]:
        return self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def next(self) -> ProviderAdapter:
        """Return the provider under the cursor and advance it by one (mod N)."""
        with self._lock:
            provider = self._providers[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._providers)
        return provider


class FailoverOrchestrator:
    """Try providers in rotation until one starts streaming."""

    def __init__(self, selector: RotationSelector, max_attempts: Optional[int] = None) -> None:
        if max_attempts is None:
            max_attempts = len(selector)
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._selector = selector
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def providers(self) -> tuple[ProviderAdapter, ...]:
        return self._selector.providers

    async def chat(self, messages: Sequence[ChatMessage], req_id: str = "-") -> FragmentStream:
        """
        Return the fragment stream of the first provider whose setup succeeds.

        Setup failures are logged (message truncated to 200 chars) and the next
        provider is tried. Raises AllProvidersUnavailableError once the attempt
        budget is spent.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self._max_attempts + 1):
            provider = self._selector.next()
            log.info(
                "Attempt %d/%d req_id=%s -> using %s service",
                attempt,
                self._max_attempts,
                req_id,
                provider.name,
            )
            try:
                fragments = await provider.chat(messages)
            except Exception as e:
                last_error = e
                log.warning(
                    "Error with %s req_id=%s: %s", provider.name, req_id, str(e)[:200]
                )
                if attempt < self._max_attempts:
                    log.info("Trying next service... req_id=%s", req_id)
                continue
            if isinstance(fragments, FragmentStream):
                return fragments
            return FragmentStream(provider.name, fragments)

        log.error(
            "All providers unavailable req_id=%s attempts=%d last_error=%r",
            req_id,
            self._max_attempts,
            last_error,
        )
        raise AllProvidersUnavailableError(self._max_attempts, last_error)
