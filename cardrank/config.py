from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigError


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class RankSettings(BaseModel):
    min_gap: float = 1e-6
    spacing: float = 1000.0
    max_attempts: int = 3
    retry_base_delay: float = 0.05  # seconds, multiplied by the attempt number

    @model_validator(mode="after")
    def check_bounds(self) -> "RankSettings":
        errors: list[str] = []
        if self.min_gap <= 0:
            errors.append(f"min_gap must be > 0. Found: {self.min_gap}")
        if self.spacing <= 0:
            errors.append(f"spacing must be > 0. Found: {self.spacing}")
        if self.min_gap >= self.spacing:
            errors.append(
                f"min_gap must be less than spacing. Found min_gap: {self.min_gap}, spacing: {self.spacing}"
            )
        if self.max_attempts <= 0:
            errors.append(f"max_attempts must be > 0. Found: {self.max_attempts}")
        if self.retry_base_delay < 0:
            errors.append(f"retry_base_delay must be >= 0. Found: {self.retry_base_delay}")
        if errors:
            raise ValueError("; ".join(errors))
        return self


class Settings(BaseModel):
    rank: RankSettings = Field(default_factory=RankSettings)
    database_url: str = "sqlite:///./cardrank.db"
    request_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"


# env var -> (section, field)
ENV_FIELDS = {
    "CARDRANK_MIN_GAP": ("rank", "min_gap"),
    "CARDRANK_SPACING": ("rank", "spacing"),
    "CARDRANK_MAX_ATTEMPTS": ("rank", "max_attempts"),
    "CARDRANK_RETRY_BASE_DELAY": ("rank", "retry_base_delay"),
    "DATABASE_URL": (None, "database_url"),
    "CARDRANK_REQUEST_TIMEOUT": (None, "request_timeout"),
    "LOG_LEVEL": (None, "log_level"),
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment, failing fast on bad values.

    Every problem is reported in a single :class:`ConfigError` so that a
    misconfigured deployment can be fixed in one go.
    """
    env = os.environ if environ is None else environ
    raw: dict = {"rank": {}}
    for name, (section, field) in ENV_FIELDS.items():
        value = env.get(name)
        if value is None or value == "":
            continue
        if section:
            raw[section][field] = value
        else:
            raw[field] = value
    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(err["msg"] for err in exc.errors())
        raise ConfigError(f"Invalid configuration: {problems}") from exc


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
