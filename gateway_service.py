"""
Chat gateway service: one streaming chat endpoint over several LLM backends.

Each request is routed to the next backend in a process-wide round robin.
A backend that fails before producing output is skipped in favour of the
next one; once output is flowing it is streamed to the client as SSE:

  data: {"content":"<fragment>"}
  ...
  data: [DONE]
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, File, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from config import AppConfig, load_config
from errors import AllProvidersUnavailableError, MalformedRequestError
from logger import setup_logging
from models import parse_messages
from providers import build_providers
from router import FailoverOrchestrator, RotationSelector
from sse_handler import SSE_HEADERS, StreamBridge
from upstream import UpstreamClient
from uploads import FileTooLargeError, extract_upload
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate()

# Initialize logging
log = setup_logging(config.log_path, config.log_level)
dump_config(config)


def build_gateway(cfg: AppConfig, upstream: UpstreamClient | None = None) -> FailoverOrchestrator:
    """Wire the enabled providers into a rotation-backed failover orchestrator."""
    providers = build_providers(cfg, upstream or UpstreamClient(cfg))
    if not providers:
        log.error(
            "No AI providers configured. Set GROQ_API_KEY, CEREBRAS_API_KEY, "
            "GEMINI_API_KEY or OLLAMA_ENABLED=true."
        )
    return FailoverOrchestrator(RotationSelector(providers), max_attempts=cfg.max_failover_attempts)


gateway = build_gateway(config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log the provider rotation on startup."""
    log.info(
        "Available AI services: %s (max_attempts=%d)",
        ", ".join(p.name for p in gateway.providers) or "None",
        gateway.max_attempts,
    )
    yield
    log.info("Chat gateway shutting down")


app = FastAPI(
    title="chat-gateway",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body: Dict[str, Any] = {"error": error}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def gateway_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Surface request-level gateway failures as the 500 `{error, details}` JSON shape."""
    log.error("Chat endpoint error path=%s: %s", request.url.path, exc)
    return _error_response(500, "Error processing request", str(exc))


# No handler for ProviderStreamError: it must abort an already-started stream.
for _exc_type in (AllProvidersUnavailableError, MalformedRequestError):
    app.add_exception_handler(_exc_type, gateway_error_handler)


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or (request.headers.get("x-trace-id") or "").strip()
        or uuid.uuid4().hex
    )


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "providers": [p.name for p in gateway.providers]}


def _get_index_html() -> str:
    """Return the chat UI page."""
    template_path = Path(__file__).parent / "templates" / "index.html"
    try:
        return template_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        log.error("Chat UI template not found at %s", template_path)
        return "<html><body><h1>Error: Chat UI template not found</h1></body></html>"


@app.get("/")
async def index() -> Response:
    """Serve the chat UI."""
    return HTMLResponse(content=_get_index_html())


@app.post("/chat")
async def chat(request: Request) -> Response:
    """Stream a chat completion from the first provider that accepts the request."""
    # Basic request size guard (prevents trivial DoS via huge JSON bodies).
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise MalformedRequestError(f"Invalid Content-Length header: {cl!r}") from None
        if n > config.max_request_bytes:
            return _error_response(
                413,
                "Request too large",
                f"{n} bytes (max {config.max_request_bytes})",
            )

    try:
        body = await request.json()
    except ValueError as e:
        raise MalformedRequestError(f"Invalid JSON body: {e}") from e
    messages = parse_messages(body)

    client_ip = request.client.host if request.client else "unknown"
    req_id = _request_id(request)
    log.info("Incoming chat req_id=%s from=%s messages=%d", req_id, client_ip, len(messages))

    stream = await gateway.chat(messages, req_id=req_id)

    # Runs after the body is sent or the client disconnects, even if the bridge never started.
    release = BackgroundTasks()
    release.add_task(stream.aclose)

    headers = dict(SSE_HEADERS)
    headers["X-Chat-Provider"] = stream.provider
    return StreamingResponse(
        StreamBridge.frames(stream, req_id=req_id, provider=stream.provider),
        media_type="text/event-stream",
        headers=headers,
        background=release,
    )


@app.post("/upload")
async def upload(file: Optional[UploadFile] = File(default=None)) -> JSONResponse:
    """Extract attachable text (or an image data URL) from an uploaded file."""
    if file is None:
        return _error_response(400, "No file provided")

    file_name = file.filename or "upload"
    if file.size is not None and file.size > config.max_file_size:
        return _error_response(
            400, "File too large", f"Maximum file size is {config.max_file_size // (1024 * 1024)}MB"
        )

    try:
        data = await file.read()
        result = extract_upload(
            file_name,
            file.content_type or "",
            data,
            max_file_size=config.max_file_size,
            max_content_length=config.max_content_length,
        )
    except FileTooLargeError as e:
        return _error_response(400, "File too large", str(e))
    except Exception as e:
        log.exception("Upload error file=%s", file_name)
        return _error_response(500, "Error processing file", str(e))
    finally:
        await file.close()

    log.info(
        "Upload processed file=%s type=%s size=%s image=%s",
        file_name,
        result["fileType"],
        result["size"],
        result.get("isImage", False),
    )
    return JSONResponse(result)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
