"""LabelHub configuration management using pydantic-settings."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root so DEEPSEEK_API_KEY / ANTHROPIC_API_KEY are available
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

DEFAULT_CONFIG_PATH = Path.home() / ".config/labelhub/config.toml"


class GeneralSettings(BaseSettings):
    db_url: str = Field(default="postgresql+asyncpg://localhost/labelhub")
    log_level: str = "INFO"
    label_name: str = "67 Entertainment"


class DeepSeekSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DEEPSEEK_")
    api_key: str = ""
    base_url: str = "https://api.deepseek.com"
    model: str = "deepseek-chat"


class AnthropicSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_")
    api_key: str = ""
    model: str = "claude-haiku-4-5-20251001"


class ChatSettings(BaseSettings):
    """Settings for the artist AI assistant."""

    provider: str = "deepseek"  # "deepseek" or "anthropic"
    timeout_seconds: float = 30.0
    context_messages: int = 40
    max_message_length: int = 2000
    default_daily_limit: int = 20
    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    fallback_reply: str = "Mi dispiace, non riesco a rispondere al momento."


class ApiSettings(BaseSettings):
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )


class Settings(BaseSettings):
    """Top-level settings assembled from subsections."""

    general: GeneralSettings = Field(default_factory=GeneralSettings)
    deepseek: DeepSeekSettings = Field(default_factory=DeepSeekSettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Load settings from TOML config file, falling back to defaults."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if config_path.exists():
            import toml

            data = toml.load(config_path)
            return cls(
                general=GeneralSettings(**data.get("general", {})),
                deepseek=DeepSeekSettings(**data.get("deepseek", {})),
                anthropic=AnthropicSettings(**data.get("anthropic", {})),
                chat=ChatSettings(**data.get("chat", {})),
                api=ApiSettings(**data.get("api", {})),
            )

        return cls()


# Module-level singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
