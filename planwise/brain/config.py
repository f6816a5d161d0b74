"""
Planwise - Configuration
All settings loaded from environment variables or a .env file.
"""

from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Chat model -- any LiteLLM model string.
    # "openai/<name>" + ai_api_base talks to an OpenAI-compatible server (Open WebUI, vLLM, ...)
    litellm_model: str = "openai/gemma3-27b"

    # Cheaper models for best-effort side tasks
    title_model: str = "openai/gemma3-27b"
    vision_model: str = "openai/gemma3-27b"

    # OpenAI-compatible endpoint (empty = provider default)
    ai_api_base: str = ""
    ai_api_key: str = ""

    # Provider keys (only need the one matching your model)
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    ai_temperature: float = 0.2
    ai_timeout_seconds: float = 30.0

    # Database path
    db_path: str = "./planwise.db"

    # Civil timezone used for "today", day filtering and naive timestamps
    timezone: str = "America/Denver"

    # Default working hours for availability
    work_start_hour: int = 9
    work_end_hour: int = 17

    # Server
    port: int = 8080

    model_config = {"env_file": [".env", "../.env"], "extra": "ignore"}

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def completion_kwargs(self) -> dict:
        """Endpoint overrides passed to every litellm call."""
        kwargs: dict = {"timeout": self.ai_timeout_seconds}
        if self.ai_api_base:
            kwargs["api_base"] = self.ai_api_base
        if self.ai_api_key:
            kwargs["api_key"] = self.ai_api_key
        return kwargs


# Singleton
settings = Settings()
