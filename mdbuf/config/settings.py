"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

import json
import tempfile
from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mdbuf import __version__


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="mdbuf-server", description="Application name")
    app_version: str = Field(default=__version__, description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_dir: Optional[Path] = Field(
        default=None, description="Directory for rotating log files (disabled when unset)"
    )

    # Protocol Configuration
    max_request_bytes: int = Field(
        default=64 * 1024 * 1024, gt=0, description="Maximum length of one request line"
    )

    # Storage Configuration
    output_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "mdbuf",
        description="Root directory for rendered images",
    )

    # Rendering Configuration
    default_width: int = Field(default=800, gt=0, description="Default viewport width")
    default_theme: Literal["light", "dark"] = Field(default="light", description="Default theme")
    viewport_initial_height: int = Field(
        default=800, gt=0, description="Provisional viewport height before full-page capture"
    )
    render_timeout: float = Field(default=30.0, gt=0, description="Render timeout in seconds")

    # Browser Configuration
    playwright_headless: bool = Field(default=True, description="Run browser in headless mode")
    playwright_timeout: int = Field(default=30000, description="Playwright timeout in milliseconds")
    browser_args: List[str] = Field(
        default=[
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
        ],
        description="Extra Chromium launch arguments",
    )

    # Diagram Configuration
    mermaid_enabled: bool = Field(default=True, description="Enable Mermaid diagram rendering")
    mermaid_script_url: str = Field(
        default="https://cdn.jsdelivr.net/npm/mermaid@11/dist/mermaid.min.js",
        description="Mermaid script URL",
    )
    diagram_grace_period_ms: int = Field(
        default=500, ge=0, description="Maximum wait for diagrams to finish rendering"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("browser_args", mode="before")
    @classmethod
    def parse_browser_args(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse browser arguments from string or list."""
        if isinstance(v, str):
            # Handle JSON-like string: ["--a", "--b"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "--a,--b"
            return [arg.strip() for arg in v.split(",") if arg.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="MDBUF_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
