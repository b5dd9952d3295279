"""Operator-tunable settings shared by the executors of one scan."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from templar.errors import SettingsError


class AdvancedSettings(BaseModel):
    """Explicit configuration value handed to every executor.

    Each scan or check owns its own instance, so an interactive check and a
    batch scan running side by side never share mutable defaults.

    Durations are in seconds except ``rate_limiter_frequency``, which is the
    interval between tokens in milliseconds.
    """

    workers: int = Field(default=300, ge=1)
    target_workers: int = Field(default=10, ge=1)
    timeout: float = Field(default=500.0, gt=0)

    retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)

    max_body_size: int = Field(default=10 * 1024 * 1024, gt=0)
    connection_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)

    headless_tabs: int = Field(default=10, ge=1)
    headless_timeout: float = Field(default=60.0, gt=0)
    max_html_size: int = Field(default=5 * 1024 * 1024, gt=0)

    network_connect_timeout: float = Field(default=10.0, gt=0)
    network_read_timeout: float = Field(default=5.0, gt=0)
    network_buffer_size: int = Field(default=4096, gt=0)

    rate_limiter_frequency: int = Field(default=10, ge=0)
    rate_limiter_burst_size: int = Field(default=100, ge=1)

    results_file: Optional[str] = "goods.txt"

    @property
    def rate_limiter_interval(self) -> float:
        """Seconds between two tokens of the per-host limiter."""
        return self.rate_limiter_frequency / 1000.0

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **overrides: Any) -> "AdvancedSettings":
        """Load settings from a YAML file, then apply non-None overrides."""
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot read settings file {path}: {e}") from e

        if not isinstance(data, dict):
            raise SettingsError(f"Settings file {path} must contain a mapping")

        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise SettingsError(f"Invalid settings in {path}: {e}") from e

    def with_overrides(self, **overrides: Any) -> "AdvancedSettings":
        values: Dict[str, Any] = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return AdvancedSettings.model_validate(values)
        except ValidationError as e:
            raise SettingsError(f"Invalid settings: {e}") from e
