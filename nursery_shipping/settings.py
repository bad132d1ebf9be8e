from dataclasses import dataclass
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SANDBOX_KEY_PREFIX = "TEST_"


class Settings(BaseSettings):
    rating_enabled: bool = True
    shipengine_mode: Literal["sandbox", "production"] = "sandbox"
    shipengine_api_key_sandbox: str | None = None
    shipengine_api_key_production: str | None = None
    shipengine_base_url: str = "https://api.shipengine.com/v1"
    rating_timeout_s: float = 15.0
    shipping_config_path: str = "config/shipping.json"
    default_weight_per_item: float = 0.5  # pounds
    log_level: str = "INFO"

    # NOTE: extra="ignore" avoids validation errors if stray keys appear in .env
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@dataclass(frozen=True)
class RatingAccount:
    """The credential in force for one request, resolved once and passed down."""
    mode: str
    api_key: str
    is_sandbox: bool

    @property
    def key_preview(self) -> str:
        return self.api_key[:8] + "..."


def resolve_rating_account(s: Settings) -> RatingAccount | None:
    """Pick the key for the configured mode; None when that slot is empty."""
    if s.shipengine_mode == "production":
        key = s.shipengine_api_key_production
    else:
        key = s.shipengine_api_key_sandbox
    key = (key or "").strip()
    if not key:
        return None
    is_sandbox = s.shipengine_mode == "sandbox" or key.startswith(SANDBOX_KEY_PREFIX)
    return RatingAccount(mode=s.shipengine_mode, api_key=key, is_sandbox=is_sandbox)


settings = Settings()
