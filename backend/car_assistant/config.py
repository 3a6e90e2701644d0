from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DASHSCOPE_GENERATION_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation"
DEFAULT_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


class Settings(BaseSettings):
    """Runtime configuration of the car-purchase assistant backend."""

    app_name: str = Field(default="voice-car-assistant-backend", alias="APP_NAME")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    allow_origins_raw: str | None = Field(default=None, alias="ALLOW_ORIGINS")

    # remote extraction (DashScope / Qwen)
    dashscope_base_url: str = Field(default=DASHSCOPE_GENERATION_URL, alias="DASHSCOPE_BASE_URL")
    dashscope_api_key: str | None = Field(default=None, alias="DASHSCOPE_API_KEY")
    dashscope_model_id: str = Field(default="qwen-32b-chat", alias="DASHSCOPE_MODEL_ID")
    remote_timeout_seconds: float = Field(default=15.0, gt=0, alias="REMOTE_TIMEOUT_SECONDS")
    remote_max_tokens: int = Field(default=500, gt=0, alias="REMOTE_MAX_TOKENS")
    remote_temperature: float = Field(default=0.1, ge=0, alias="REMOTE_TEMPERATURE")

    # analysis pipeline
    debounce_seconds: float = Field(default=1.5, gt=0, alias="ANALYSIS_DEBOUNCE_SECONDS")
    min_analysis_chars: int = Field(default=5, ge=0, alias="MIN_ANALYSIS_CHARS")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)

    @property
    def allow_origins(self) -> List[str]:
        if not self.allow_origins_raw:
            return list(DEFAULT_ORIGINS)
        return [origin.strip() for origin in self.allow_origins_raw.split(",") if origin.strip()]

    @property
    def llm_credentials_ready(self) -> bool:
        return bool(self.dashscope_base_url and self.dashscope_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
