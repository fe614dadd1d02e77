"""Utility functions for the chat gateway."""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import mask_secret

log = logging.getLogger("chat_gateway")


def load_env_files() -> None:
    """Load .env files from program and current directory."""
    this_dir = Path(__file__).resolve().parent
    p1 = this_dir / ".env"
    p2 = Path.cwd() / ".env"

    loaded_any = False
    if p1.exists():
        loaded_any = load_dotenv(dotenv_path=str(p1), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p1))
    else:
        log.info("No .env in program directory: %s", str(p1))

    if p2.exists() and p2 != p1:
        loaded_any = load_dotenv(dotenv_path=str(p2), override=True) or loaded_any
        log.info("Loaded .env from %s", str(p2))
    elif p2 != p1:
        log.info("No .env in current directory: %s", str(p2))

    if not loaded_any:
        log.info(".env not loaded (not found or no variables applied).")


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== Chat gateway startup config ===")
    for p in config.providers:
        log.info(
            "PROVIDER name=%s enabled=%s model=%s base_url=%s temperature=%s max_tokens=%s "
            "tls_verify=%s api_key=%s",
            p.name,
            p.enabled,
            p.model,
            p.base_url,
            p.temperature,
            p.max_tokens,
            p.tls_verify,
            mask_secret(p.api_key),
        )
        if p.enabled and not p.tls_verify:
            log.warning("TLS verification disabled for provider %s", p.name)
    log.info("MAX_FAILOVER_ATTEMPTS=%s", config.max_failover_attempts)
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("MAX_FILE_SIZE=%s", config.max_file_size)
    log.info("MAX_CONTENT_LENGTH=%s", config.max_content_length)
    log.info("PORT=%s", config.port)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path)
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("ProgramDir=%s", str(Path(__file__).resolve().parent))
    log.info("===================================")
