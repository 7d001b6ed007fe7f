from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_SECRETS = ("supabase_url", "supabase_key", "openai_api_key")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BOOKMATCH_", case_sensitive=False, populate_by_name=True
    )

    env: str = "dev"
    log_level: str = "INFO"

    # Identity provider. The unprefixed names are accepted for existing deployments.
    supabase_url: str | None = Field(
        default=None, validation_alias=AliasChoices("BOOKMATCH_SUPABASE_URL", "SUPABASE_URL")
    )
    supabase_key: str | None = Field(
        default=None, validation_alias=AliasChoices("BOOKMATCH_SUPABASE_KEY", "SUPABASE_KEY")
    )
    supabase_timeout_s: float = 10.0

    # Completion provider
    openai_api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("BOOKMATCH_OPENAI_API_KEY", "OPENAI_APIKEY")
    )
    openai_base_url: str = "https://api.openai.com"
    openai_model: str = "gpt-4o-mini"
    openai_timeout_s: float = 60.0

    # Rate limiting for the protected route
    rate_limit_requests: int = Field(default=10, ge=1)
    rate_limit_window_seconds: float = Field(default=30.0, gt=0)
    rate_limit_scope: str = Field(default="global", description="global or user")

    upstream_failure_status: int = Field(default=200, ge=200, le=599)
    strict_startup: bool = True

    @property
    def missing_required(self) -> list[str]:
        return [
            f"BOOKMATCH_{name.upper()}"
            for name in REQUIRED_SECRETS
            if not (getattr(self, name) or "").strip()
        ]

    @property
    def rate_limit_scope_normalized(self) -> str:
        return self.rate_limit_scope.strip().lower()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
