from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings read from the environment (entrypoints call load_dotenv() first)"""

    database_url: str = Field(
        "sqlite:///data/aidentify.db",
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_URL", "database_url"),
    )

    # Hosted AI
    api_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "API_KEY", "GOOGLE_API_KEY", "api_key"),
    )
    vision_model: str = "gemini-3-flash-preview"
    assistant_model: str = "gemini-3-pro-preview"
    live_model: str = "gemini-2.5-flash-native-audio-preview-12-2025"
    assistant_thinking_budget: int = 16384
    response_language: str = "English"

    # Recognition
    recognition_max_references: int = 8
    recognition_max_image_side: int = 1024
    image_fetch_timeout: float = 15.0

    # Photo storage
    media_root: str = "data/media"
    media_base_url: str = "http://localhost:8000/media"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    image_bucket: str = "parts-images"

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def ai_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def get_settings() -> Settings:
    # Not cached: a key configured after startup is picked up on the next call
    return Settings()
