"""Configuration management for Counsel Actions."""

from typing import List, Optional
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json


def _split_list(value):
    """Parse a list field given as a JSON array or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return []
        # Handle JSON array string
        if value.startswith('[') and value.endswith(']'):
            try:
                return [str(item).strip() for item in json.loads(value) if str(item).strip()]
            except json.JSONDecodeError:
                pass
        return [item.strip() for item in value.split(',') if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="counsel-actions")
    app_env: str = Field(default="development")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    public_base_url: str = Field(default="http://localhost:8000")

    # Security
    api_keys: str = Field(default="")
    rate_limit_requests: int = Field(default=60, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)
    auth_failure_limit: int = Field(default=10, ge=1)  # bad keys per client host per window
    allowed_ips: str = Field(default="")
    cors_origins: str = Field(default="https://chat.openai.com,https://chatgpt.com")

    # OpenAI / LLM
    openai_api_key: Optional[str] = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.4)
    llm_timeout: float = Field(default=60.0)
    llm_fallback: bool = Field(default=True)  # Heuristic answer when the LLM fails

    # Knowledge base
    knowledge_dir: Path = Field(default=Path("data/knowledge"))
    knowledge_chunk_size: int = Field(default=180, ge=20)  # words
    knowledge_chunk_overlap: int = Field(default=30, ge=0)
    knowledge_top_k: int = Field(default=4, ge=1)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    url_fetch_timeout: float = Field(default=15.0)

    # Image generation
    image_api_base_url: str = Field(default="https://api.openai.com")
    image_model: str = Field(default="gpt-image-1")
    image_size: str = Field(default="1024x1024")

    # Monitoring
    enable_metrics: bool = Field(default=True)

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env.lower() == "production"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.get_api_keys()) or self.is_production

    def get_api_keys(self) -> List[str]:
        """Get configured API keys as list."""
        return _split_list(self.api_keys)

    def get_allowed_ips(self) -> List[str]:
        """Get allowed client IPs or networks as list."""
        return _split_list(self.allowed_ips)

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as list."""
        return _split_list(self.cors_origins)


# Global settings instance
settings = Settings()
