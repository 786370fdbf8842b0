"""Client configuration using pydantic-settings."""

from functools import cached_property, lru_cache
from pathlib import Path
from typing import Self

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Base URL of the events REST API, including the /api prefix
    api_base_url: str = "http://localhost:5000/api"

    # Public Razorpay key handed to the checkout widget (never the secret).
    # Only paid registrations need it, so it is checked at checkout.
    razorpay_key_id: str = ""

    # Bearer token for unattended use (CLI); interactive sessions log in instead
    api_token: str = ""

    http_timeout: float = 10.0

    # Certificate rendering
    # Each <img> races this timeout independently during preloading
    image_preload_timeout: float = 10.0
    # Absorbs late layout shifts (web font swaps) before rasterizing
    certificate_settle_delay: float = 1.0
    certificate_width: int = 900
    certificate_height: int = 600
    certificate_raster_scale: float = 2.0
    # Where generated PDF/HTML files land. Defaults to the working directory.
    output_dir: str = ""

    # Checkout widget branding
    checkout_name: str = "Xyzon Events"
    checkout_theme_color: str = "#000066"

    toast_duration_ms: int = 4000
    countdown_interval_seconds: int = 60

    debug: bool = False

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValueError(
                "API_BASE_URL must be an absolute http(s) URL, "
                f"got {self.api_base_url!r}."
            )
        return self

    @cached_property
    def output_dir_path(self) -> Path:
        """Defaults to the current working directory if OUTPUT_DIR not set."""
        if self.output_dir:
            return Path(self.output_dir)
        return Path.cwd()

    @property
    def api_origin(self) -> str:
        """Scheme and host of the API, used to resolve relative image sources."""
        scheme, _, rest = self.api_base_url.partition("://")
        host = rest.split("/", 1)[0]
        return f"{scheme}://{host}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this in tests to reset settings between test cases.
    After clearing, the next get_settings() call will create
    a fresh Settings instance with current environment variables.

    Example:
        def test_something(monkeypatch):
            monkeypatch.setenv("DEBUG", "true")
            clear_settings_cache()
            settings = get_settings()  # Fresh instance
    """
    get_settings.cache_clear()
