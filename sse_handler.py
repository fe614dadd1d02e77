"""Server-Sent Events (SSE) handling: upstream parsing and client framing."""

from __future__ import annotations

import contextlib
import json
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List

from errors import ProviderStreamError

log = logging.getLogger("chat_gateway")

SSEEventLines = List[str]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_event_data_text(lines: SSEEventLines) -> str:
    """
    Join all `data:` lines in an SSE event into a single payload.

    Multiple data lines of one event are joined with '\n'.
    """
    parts: List[str] = []
    for ln in lines:
        if ln.startswith("data:"):
            parts.append(ln[len("data:"):].lstrip())
    return "\n".join(parts)


async def read_next_sse_event(aiter: AsyncIterator[str]) -> SSEEventLines | None:
    """
    Read one SSE event (blank-line delimited) from an async line iterator.

    Returns:
    - list[str]: event lines excluding the terminating blank line (may be empty for keepalive)
    - None: EOF (no more data)
    """
    lines: SSEEventLines = []
    while True:
        try:
            raw = await aiter.__anext__()
        except StopAsyncIteration:
            return lines or None

        line = raw.rstrip("\r\n")
        if line == "":
            return lines
        lines.append(line)


def is_done_data_line(line: str) -> bool:
    """
    Accept: "data:[DONE]" / "data: [DONE]" / "data:    [DONE]" (tolerate whitespace)
    """
    if not line.startswith("data:"):
        return False
    return line[len("data:"):].strip() == "[DONE]"


def extract_content_fragments(obj: Any) -> List[str]:
    """Extract non-empty content fragments from an OpenAI-style chunk."""
    out: List[str] = []
    if not isinstance(obj, dict):
        return out

    for ch in (obj.get("choices") or []):
        if not isinstance(ch, dict):
            continue
        d = ch.get("delta") or ch.get("message") or {}
        if isinstance(d, dict):
            c = d.get("content")
            if isinstance(c, str) and c:
                out.append(c)
    return out


def sse_data(obj: Dict[str, Any]) -> bytes:
    """Encode dict as SSE data event (compact JSON)."""
    return f"data: {json.dumps(obj, ensure_ascii=False, separators=(',', ':'))}\n\n".encode("utf-8")


def sse_done() -> bytes:
    """SSE [DONE] event."""
    return b"data: [DONE]\n\n"


class StreamBridge:
    """Frame a provider's fragment stream into the client SSE protocol."""

    @staticmethod
    async def frames(
        stream: AsyncIterator[str],
        *,
        req_id: str = "-",
        provider: str | None = None,
    ) -> AsyncGenerator[bytes, None]:
        """
        Yield one `data: {"content": ...}` frame per non-empty fragment, then `[DONE]`.

        A fragment error is re-raised as ProviderStreamError without a closing
        frame so the transport is torn down and the client sees an abrupt end.
        When the consumer stops early (disconnect, cancellation) nothing more is
        pulled and `[DONE]` is never sent. The fragment stream is closed on every
        exit path, which releases the provider's upstream connection.
        """
        name = provider or getattr(stream, "provider", None) or "unknown"
        count = 0
        completed = False
        try:
            try:
                async for fragment in stream:
                    if not fragment:
                        continue
                    count += 1
                    yield sse_data({"content": fragment})
            except ProviderStreamError as e:
                log.error(
                    "Streaming error req_id=%s provider=%s after=%d fragments: %s",
                    req_id,
                    e.provider,
                    count,
                    str(e)[:200],
                )
                raise
            except Exception as e:
                log.error(
                    "Streaming error req_id=%s provider=%s after=%d fragments: %r",
                    req_id,
                    name,
                    count,
                    e,
                )
                raise ProviderStreamError(name, f"{type(e).__name__}: {e}") from e
            completed = True
            yield sse_done()
            log.info("Stream complete req_id=%s provider=%s fragments=%d", req_id, name, count)
        finally:
            if not completed:
                log.info(
                    "Stream ended early req_id=%s provider=%s fragments=%d", req_id, name, count
                )
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                with contextlib.suppress(Exception):
                    await aclose()
