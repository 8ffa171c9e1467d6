"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rteimages.models.content import ReferenceConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Site configuration
    site_url: str = "http://localhost:8000/"
    request_host: str = "http://localhost:8000"
    public_path: str = "public"
    storage_base_path: str = "fileadmin"

    # Admin configuration
    admin_users: str = ""  # Comma-separated usernames
    dev_skip_auth: bool = False

    # Security
    secret_key: str = "change-me-in-production"

    # Database
    database_url: str = "sqlite+aiosqlite:///./rteimages.db"

    # External image import
    fetch_external_images: bool = True
    import_folder: str = "1:/_temp_/"

    # Comma-separated path fragments identifying processed renditions
    processed_markers: str = "/_processed_/,/typo3/image/process"

    # Optional YAML file with table/field configuration
    references_config: str = ""

    # Public rendering
    lazy_loading: str = ""
    max_file_size_for_auto: int = 0  # bytes, 0 disables
    popup_config: dict[str, Any] = Field(default_factory=dict)  # JSON, written to data-popup

    # Debug mode
    debug: bool = False

    @property
    def admin_users_list(self) -> list[str]:
        """Return admin users as a list."""
        if not self.admin_users:
            return []
        return [u.strip() for u in self.admin_users.split(",") if u.strip()]

    @property
    def processed_markers_list(self) -> list[str]:
        """Return processed path markers as a list."""
        return [m.strip() for m in self.processed_markers.split(",") if m.strip()]

    @property
    def resolved_public_path(self) -> str:
        """Return the public root as an absolute path."""
        return str(Path(self.public_path).resolve())


def load_reference_config(settings: Settings) -> ReferenceConfig:
    """Load the table/field configuration, falling back to settings defaults."""
    data: dict = {}
    if settings.references_config:
        path = Path(settings.references_config)
        if path.is_file():
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}

    data.setdefault("processed_markers", settings.processed_markers_list)
    data.setdefault("fetch_external_images", settings.fetch_external_images)
    return ReferenceConfig.from_dict(data)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache
def get_reference_config() -> ReferenceConfig:
    """Get cached reference configuration."""
    return load_reference_config(get_settings())
