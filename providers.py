"""Provider adapters: one backend's native streaming API behind a common contract."""

from __future__ import annotations

import contextlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Dict, List, Sequence

import httpx

from config import AppConfig, ProviderSettings
from errors import ProviderSetupError, ProviderStreamError
from models import ChatMessage
from sse_handler import (
    extract_content_fragments,
    is_done_data_line,
    read_next_sse_event,
    sse_event_data_text,
)
from upstream import UpstreamClient

log = logging.getLogger("chat_gateway")


class FragmentStream:
    """Cancellable async iterator over one provider's text fragments.

    Once closed, no further fragment is pulled. `on_close` releases the
    provider's upstream resources and runs on close whether or not iteration
    ever started; a close interrupted before the release finished can be retried.
    """

    def __init__(
        self,
        provider: str,
        fragments: AsyncIterator[str],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.provider = provider
        self._fragments = fragments
        self._on_close = on_close
        self._closed = False
        self._released = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> FragmentStream:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        return await self._fragments.__anext__()

    async def aclose(self) -> None:
        self._closed = True
        if self._released:
            return
        try:
            aclose = getattr(self._fragments, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._on_close is not None:
                await self._on_close()
            self._released = True

    async def __aenter__(self) -> FragmentStream:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class ProviderAdapter(ABC):
    """
    `chat(messages)` resolves once the upstream accepted the request and
    returns a FragmentStream of non-empty text fragments. Closing the stream
    releases the upstream response and its client, even if it was never iterated.

    Anything raised while awaiting `chat` happens before a fragment exists and
    is a ProviderSetupError. Errors raised while iterating are ProviderStreamError.
    """

    def __init__(self, settings: ProviderSettings, upstream: UpstreamClient) -> None:
        self.settings = settings
        self._upstream = upstream

    @property
    def name(self) -> str:
        return self.settings.name

    @abstractmethod
    def endpoint(self) -> str:
        """Full URL of the streaming chat endpoint."""

    @abstractmethod
    def build_payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        """Translate the conversation into the backend's request body."""

    @abstractmethod
    def extract_fragments(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        """Translate the backend's response lines into text fragments."""

    def headers(self) -> Dict[str, str]:
        if self.settings.api_key:
            return {"Authorization": f"Bearer {self.settings.api_key}"}
        return {}

    def params(self) -> Dict[str, str] | None:
        return None

    async def chat(self, messages: Sequence[ChatMessage]) -> FragmentStream:
        payload = self.build_payload(messages)
        client, resp = await self._upstream.open_stream(
            self.name,
            self.endpoint(),
            headers=self.headers(),
            payload=payload,
            verify=self.settings.tls_verify,
            params=self.params(),
        )

        async def release() -> None:
            with contextlib.suppress(Exception):
                await resp.aclose()
            with contextlib.suppress(Exception):
                await client.aclose()

        return FragmentStream(self.name, self._fragments(resp), on_close=release)

    async def _fragments(self, resp: httpx.Response) -> AsyncGenerator[str, None]:
        try:
            async for text in self.extract_fragments(resp.aiter_lines()):
                if text:
                    yield text
        except httpx.HTTPError as e:
            raise ProviderStreamError(self.name, f"{type(e).__name__}: {e}") from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, model={self.settings.model!r})"


def _upstream_error_message(obj: Dict[str, Any]) -> str | None:
    """Return the message of an in-stream `{"error": ...}` payload, if any."""
    err = obj.get("error")
    if err is None:
        return None
    if isinstance(err, dict):
        return str(err.get("message") or err)
    return str(err)


class OpenAICompatibleProvider(ProviderAdapter):
    """Backends speaking the OpenAI chat-completions SSE dialect (Groq, Cerebras)."""

    def __init__(
        self,
        settings: ProviderSettings,
        upstream: UpstreamClient,
        extra_params: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(settings, upstream)
        self._extra_params = dict(extra_params or {})

    def endpoint(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/chat/completions"

    def build_payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.settings.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.settings.temperature,
            "max_completion_tokens": self.settings.max_tokens,
            "stream": True,
        }
        payload.update(self._extra_params)
        return payload

    async def extract_fragments(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        while True:
            ev = await read_next_sse_event(lines)
            if ev is None:
                return
            if any(is_done_data_line(ln) for ln in ev):
                return
            data = sse_event_data_text(ev)
            if not data:
                continue  # keepalive / comment
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                log.debug("Skipping non-JSON SSE data provider=%s data=%r", self.name, data[:200])
                continue
            if not isinstance(obj, dict):
                continue
            err = _upstream_error_message(obj)
            if err is not None:
                raise ProviderStreamError(self.name, err)
            for frag in extract_content_fragments(obj)[:1]:
                yield frag


class GeminiProvider(ProviderAdapter):
    """Google Gemini `streamGenerateContent` over SSE."""

    def endpoint(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/models/{self.settings.model}:streamGenerateContent"

    def headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.settings.api_key}

    def params(self) -> Dict[str, str] | None:
        return {"alt": "sse"}

    def build_payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        if not messages:
            raise ProviderSetupError(self.name, "No messages provided")

        system = [m.content for m in messages if m.role == "system"]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != "system"
        ]
        if not contents:
            raise ProviderSetupError(self.name, "Last message is undefined")
        # The conversation must end on a user turn.
        contents[-1]["role"] = "user"

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.settings.temperature,
                "maxOutputTokens": self.settings.max_tokens,
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system)}]}
        return payload

    @staticmethod
    def candidate_text(obj: Any) -> str:
        """Concatenate the text parts of the first candidate."""
        if not isinstance(obj, dict):
            return ""
        candidates = obj.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return ""
        return "".join(
            p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
        )

    async def extract_fragments(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        while True:
            ev = await read_next_sse_event(lines)
            if ev is None:
                return
            data = sse_event_data_text(ev)
            if not data:
                continue
            try:
                obj = json.loads(data)
            except json.JSONDecodeError:
                log.debug("Skipping non-JSON SSE data provider=%s data=%r", self.name, data[:200])
                continue
            if isinstance(obj, dict):
                err = _upstream_error_message(obj)
                if err is not None:
                    raise ProviderStreamError(self.name, err)
            text = self.candidate_text(obj)
            if text:
                yield text


class OllamaProvider(ProviderAdapter):
    """Ollama `/api/chat` streaming newline-delimited JSON."""

    def endpoint(self) -> str:
        return f"{self.settings.base_url.rstrip('/')}/api/chat"

    def build_payload(self, messages: Sequence[ChatMessage]) -> Dict[str, Any]:
        return {
            "model": self.settings.model,
            "messages": [m.to_dict() for m in messages],
            "stream": True,
            "options": {
                "temperature": self.settings.temperature,
                "num_predict": self.settings.max_tokens,
            },
        }

    async def extract_fragments(self, lines: AsyncIterator[str]) -> AsyncIterator[str]:
        async for raw in lines:
            line = raw.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                log.debug("Skipping malformed NDJSON line provider=%s line=%r", self.name, line[:200])
                continue
            if not isinstance(obj, dict):
                continue
            err = _upstream_error_message(obj)
            if err is not None:
                raise ProviderStreamError(self.name, err)
            message = obj.get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str) and content:
                yield content
            if obj.get("done") is True:
                return


def build_providers(config: AppConfig, upstream: UpstreamClient | None = None) -> List[ProviderAdapter]:
    """Create the enabled adapters in rotation order: Groq, Cerebras, Gemini, Ollama."""
    upstream = upstream or UpstreamClient(config)
    out: List[ProviderAdapter] = []
    if config.groq.enabled:
        out.append(OpenAICompatibleProvider(config.groq, upstream, extra_params={"top_p": 1}))
    if config.cerebras.enabled:
        out.append(OpenAICompatibleProvider(config.cerebras, upstream))
    if config.gemini.enabled:
        out.append(GeminiProvider(config.gemini, upstream))
    if config.ollama.enabled:
        out.append(OllamaProvider(config.ollama, upstream))
    return out
