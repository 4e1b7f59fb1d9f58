"""
Configuration Management System

Settings for the task scheduler server.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scheduling.models import TaskStatus


class ServerSettings(BaseSettings):
    """Server settings for the task scheduler."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SCHEDULER_",
        extra="ignore",
    )

    data_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent / "data",
        description="Data storage directory",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="Bind address for the HTTP transport")
    port: int = Field(default=8084, description="Port for the HTTP transport")

    # Chat assistant (OpenAI-compatible chat completion API)
    openai_api_key: Optional[str] = Field(
        default=None,
        description="API key for the chat completion provider"
    )

    openai_base_url: Optional[str] = Field(
        default=None,
        description="Override for OpenAI-compatible providers (e.g., https://openrouter.ai/api/v1)"
    )

    assistant_model: str = Field(default="gpt-3.5-turbo", description="Chat completion model")
    assistant_max_tokens: int = Field(default=500, gt=0)
    assistant_temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    # Scheduling defaults (users can override per account)
    work_start_hour: int = Field(default=9, ge=0, le=23)
    work_end_hour: int = Field(default=17, ge=1, le=24)
    horizon_days: int = Field(default=7, ge=0)
    granularity_minutes: int = Field(default=60, gt=0)
    default_duration_minutes: int = Field(default=60, gt=0)

    excluded_statuses: List[TaskStatus] = Field(
        default_factory=list,
        description="Task statuses that do not block a time slot"
    )

    strict_task_validation: bool = Field(
        default=False,
        description="Reject tasks with inconsistent times instead of ignoring them"
    )

    @model_validator(mode="after")
    def _check_work_window(self) -> "ServerSettings":
        if self.work_start_hour >= self.work_end_hour:
            raise ValueError("work_start_hour must be less than work_end_hour")
        return self


# ============= Singleton Pattern =============

# Global settings instance for application-wide access
_settings: Optional[ServerSettings] = None


def get_settings() -> ServerSettings:
    """
    Get or create the global settings singleton instance.

    Implements lazy initialization of the settings object.
    The first call creates the instance, subsequent calls
    return the same instance for consistency.

    Returns:
        ServerSettings: The global settings instance
    """
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
