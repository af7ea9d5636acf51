"""Configuration helpers for the approval dashboard."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True, extra="ignore"
    )

    api_base_url: str = Field(
        "http://127.0.0.1:8000/api",
        alias="DASHBOARD_API_URL",
        description="Base URL of the work-order API, including the /api prefix.",
    )
    request_timeout: float = Field(
        30.0, alias="DASHBOARD_REQUEST_TIMEOUT", description="Seconds per HTTP request."
    )
    page_size: int = Field(50, alias="DASHBOARD_PAGE_SIZE", ge=1, le=500)
    search_debounce_ms: int = Field(
        400,
        alias="DASHBOARD_SEARCH_DEBOUNCE_MS",
        ge=0,
        description="Quiet period before a typed search is sent to the server.",
    )
    state_dir: str | None = Field(
        None,
        alias="DASHBOARD_STATE_DIR",
        description="Where local storage and cookies live; defaults to ~/.approval_dashboard.",
    )
    auth_cookie_name: str = Field("auth_token", alias="DASHBOARD_AUTH_COOKIE")
    download_dir: str | None = Field(
        None,
        alias="DASHBOARD_DOWNLOAD_DIR",
        description="Directory for downloaded source documents; defaults to the cwd.",
    )
    log_level: str = Field("WARNING", alias="DASHBOARD_LOG_LEVEL")

    @property
    def search_debounce_seconds(self) -> float:
        return self.search_debounce_ms / 1000.0

    def resolved_state_dir(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser().resolve()
        return Path.home() / ".approval_dashboard"

    def resolved_download_dir(self) -> Path:
        if self.download_dir:
            return Path(self.download_dir).expanduser().resolve()
        return Path.cwd()


def get_settings() -> Settings:
    """Return a fresh settings instance."""
    return Settings()
