"""
User Configuration Service

Manages per-user scheduling preferences: work window, search horizon,
candidate granularity and which task statuses still occupy their slot.
Preferences are stored as one JSON file per user.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from config.settings import ServerSettings, get_settings
from scheduling.models import TaskStatus
from scheduling.slot_finder import SlotSearchOptions


class SchedulingPreferences(BaseModel):
    """Scheduling knobs for one user."""

    work_start_hour: int = Field(default=9, ge=0, le=23)
    work_end_hour: int = Field(default=17, ge=1, le=24)
    horizon_days: int = Field(default=7, ge=0)
    granularity_minutes: int = Field(default=60, gt=0)
    default_duration_minutes: int = Field(default=60, gt=0)
    excluded_statuses: List[TaskStatus] = Field(default_factory=list)
    strict_task_validation: bool = False

    @model_validator(mode="after")
    def _check_work_window(self) -> "SchedulingPreferences":
        if self.work_start_hour >= self.work_end_hour:
            raise ValueError("work_start_hour must be less than work_end_hour")
        return self

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> "SchedulingPreferences":
        return cls(
            work_start_hour=settings.work_start_hour,
            work_end_hour=settings.work_end_hour,
            horizon_days=settings.horizon_days,
            granularity_minutes=settings.granularity_minutes,
            default_duration_minutes=settings.default_duration_minutes,
            excluded_statuses=list(settings.excluded_statuses),
            strict_task_validation=settings.strict_task_validation,
        )

    def search_options(self) -> SlotSearchOptions:
        return SlotSearchOptions(
            horizon_days=self.horizon_days,
            work_start_hour=self.work_start_hour,
            work_end_hour=self.work_end_hour,
            granularity_minutes=self.granularity_minutes,
        )


class UserConfigService:
    """
    Service for managing per-user configuration.

    Currently stores scheduling preferences; unknown keys in a user's
    file are preserved on write.
    """

    PREFERENCES_KEY = "scheduling"

    def __init__(self, data_dir: Optional[Path] = None, settings: Optional[ServerSettings] = None):
        """
        Initialize user config service.

        Args:
            data_dir: Base data directory (defaults to settings.data_dir)
            settings: Settings providing preference defaults
        """
        self.logger = get_logger("UserConfigService")
        self.settings = settings or get_settings()
        base_dir = Path(data_dir) if data_dir is not None else self.settings.data_dir
        self.config_dir = base_dir / "user_configs"
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def get_user_config_path(self, user_id: str) -> Path:
        """Get path to user's config file."""
        return self.config_dir / f"{user_id}.json"

    def default_preferences(self) -> SchedulingPreferences:
        return SchedulingPreferences.from_settings(self.settings)

    def get_user_config(self, user_id: str) -> Dict[str, Any]:
        """
        Get full user configuration.

        Args:
            user_id: User identifier

        Returns:
            User configuration dictionary (empty if none stored or unreadable)
        """
        config_path = self.get_user_config_path(user_id)
        if not config_path.exists():
            return {}
        try:
            with open(config_path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error reading user config for {user_id}: {e}")
            return {}

    def get_preferences(self, user_id: str) -> SchedulingPreferences:
        """
        Get a user's scheduling preferences, filled in from server defaults.

        Stored values that no longer validate are discarded in favour of
        the defaults.
        """
        stored = self.get_user_config(user_id).get(self.PREFERENCES_KEY) or {}
        merged = self.default_preferences().model_dump()
        merged.update(stored)
        try:
            return SchedulingPreferences.model_validate(merged)
        except ValidationError as e:
            self.logger.error(f"Invalid stored preferences for {user_id}, using defaults: {e}")
            return self.default_preferences()

    def set_preferences(self, user_id: str, **updates: Any) -> SchedulingPreferences:
        """
        Update some of a user's scheduling preferences.

        Args:
            user_id: User identifier
            **updates: Preference fields to change; None values are ignored

        Returns:
            The resulting preferences

        Raises:
            ValueError: If a field is unknown or the result is invalid
        """
        unknown = set(updates) - set(SchedulingPreferences.model_fields)
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(sorted(unknown))}")

        current = self.get_preferences(user_id).model_dump()
        current.update({k: v for k, v in updates.items() if v is not None})
        preferences = SchedulingPreferences.model_validate(current)

        config = self.get_user_config(user_id)
        config[self.PREFERENCES_KEY] = preferences.model_dump(mode="json")
        self._write_config(user_id, config)
        self.logger.info(f"Updated scheduling preferences for {user_id}")
        return preferences

    def reset_preferences(self, user_id: str) -> SchedulingPreferences:
        """Forget a user's overrides and return the server defaults."""
        config = self.get_user_config(user_id)
        if config.pop(self.PREFERENCES_KEY, None) is not None:
            self._write_config(user_id, config)
        return self.default_preferences()

    def _write_config(self, user_id: str, config: Dict[str, Any]) -> None:
        config_path = self.get_user_config_path(user_id)
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=2)
