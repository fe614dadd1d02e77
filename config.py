"""Configuration management for the chat gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and generation parameters for one upstream backend."""

    name: str
    enabled: bool
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    tls_verify: bool = True


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Upstream backends, in rotation order
    groq: ProviderSettings
    cerebras: ProviderSettings
    gemini: ProviderSettings
    ollama: ProviderSettings

    # Failover
    max_failover_attempts: int

    # Timeouts and limits
    request_timeout_s: float
    max_request_bytes: int
    max_file_size: int
    max_content_length: int

    # Server settings
    port: int
    log_level: str
    log_path: str
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        groq_key = os.getenv("GROQ_API_KEY", "")
        cerebras_key = os.getenv("CEREBRAS_API_KEY", "")
        gemini_key = os.getenv("GEMINI_API_KEY", "")
        return cls(
            groq=ProviderSettings(
                name="Groq",
                enabled=bool(groq_key),
                api_key=groq_key,
                base_url=_env_str("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
                model=_env_str("GROQ_MODEL", "moonshotai/kimi-k2-instruct-0905"),
                temperature=_env_float("GROQ_TEMPERATURE", 0.6),
                max_tokens=_env_int("GROQ_MAX_TOKENS", 4096),
                tls_verify=_env_bool("GROQ_TLS_VERIFY", True),
            ),
            cerebras=ProviderSettings(
                name="Cerebras",
                enabled=bool(cerebras_key),
                api_key=cerebras_key,
                base_url=_env_str("CEREBRAS_BASE_URL", "https://api.cerebras.ai/v1"),
                model=_env_str("CEREBRAS_MODEL", "zai-glm-4.6"),
                temperature=_env_float("CEREBRAS_TEMPERATURE", 0.6),
                max_tokens=_env_int("CEREBRAS_MAX_TOKENS", 40960),
                tls_verify=_env_bool("CEREBRAS_TLS_VERIFY", True),
            ),
            gemini=ProviderSettings(
                name="Google Gemini",
                enabled=bool(gemini_key),
                api_key=gemini_key,
                base_url=_env_str(
                    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
                ),
                model=_env_str("GEMINI_MODEL", "gemini-1.5-pro"),
                temperature=_env_float("GEMINI_TEMPERATURE", 0.7),
                max_tokens=_env_int("GEMINI_MAX_TOKENS", 8192),
                tls_verify=_env_bool("GEMINI_TLS_VERIFY", True),
            ),
            # Ollama runs locally and needs no key; opt-in only
            ollama=ProviderSettings(
                name="Ollama",
                enabled=_env_bool("OLLAMA_ENABLED", False),
                api_key=os.getenv("OLLAMA_API_KEY", ""),
                base_url=_env_str("OLLAMA_BASE_URL", "http://localhost:11434"),
                model=_env_str("OLLAMA_MODEL", "llama3.2"),
                temperature=_env_float("OLLAMA_TEMPERATURE", 0.7),
                max_tokens=_env_int("OLLAMA_MAX_TOKENS", 4096),
                tls_verify=_env_bool("OLLAMA_TLS_VERIFY", True),
            ),
            max_failover_attempts=_env_int("MAX_FAILOVER_ATTEMPTS", 3),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 60.0),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            max_file_size=_env_int("MAX_FILE_SIZE", 5 * 1024 * 1024),  # 5MB
            max_content_length=_env_int("MAX_CONTENT_LENGTH", 8000),
            port=_env_int("PORT", 3000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            log_path=_env_str("LOG_PATH", "/var/log/chat-gateway/chat-gateway.log"),
            user_agent=_env_str("USER_AGENT", "chat-gateway/0.1.0"),
        )

    @property
    def providers(self) -> tuple[ProviderSettings, ...]:
        """Provider settings in rotation order."""
        return (self.groq, self.cerebras, self.gemini, self.ollama)

    def validate(self) -> None:
        """Validate configuration."""
        if self.max_failover_attempts <= 0:
            raise ValueError("MAX_FAILOVER_ATTEMPTS must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if self.max_file_size <= 0:
            raise ValueError("MAX_FILE_SIZE must be > 0")
        if self.max_content_length <= 0:
            raise ValueError("MAX_CONTENT_LENGTH must be > 0")
        for p in self.providers:
            if p.enabled and not p.model:
                raise ValueError(f"{p.name} model must be non-empty")
            if p.enabled and p.max_tokens <= 0:
                raise ValueError(f"{p.name} max tokens must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
