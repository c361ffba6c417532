"""
Per-user FSRS configuration.

The weight vector is kept as a named parameter bag (w0..w18) rather than
positional fields so that the scheduling formula can change without a
schema migration. Unknown weight names are preserved as-is.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from flashdeck.fsrs.constants import DEFAULT_WEIGHTS


class FsrsConfig(BaseModel):
    """Scheduling parameters for one user."""

    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))

    # Learning phase
    learning_steps_minutes: list[float] = Field(default_factory=lambda: [1, 10])
    graduating_interval_days: int = Field(default=1, gt=0)
    easy_interval_days: int = Field(default=4, gt=0)

    # Interval limits
    minimum_interval_days: int = Field(default=1, gt=0)
    maximum_interval_days: int = Field(default=36500, gt=0)

    # Relearning / lapses
    relearning_steps_minutes: list[float] = Field(default_factory=lambda: [10])
    lapse_multiplier: float = Field(default=0.5, gt=0, le=1)

    desired_retention: float = Field(default=0.90, gt=0, lt=1)

    # Optional overrides of the tier's daily caps (None = use tier default)
    new_cards_per_day: Optional[int] = Field(default=None, ge=0)
    reviews_per_day: Optional[int] = Field(default=None, ge=0)

    @field_validator("weights")
    @classmethod
    def _fill_missing_weights(cls, value: dict[str, float]) -> dict[str, float]:
        merged = dict(DEFAULT_WEIGHTS)
        merged.update({str(k): float(v) for k, v in value.items()})
        return merged

    @field_validator("learning_steps_minutes", "relearning_steps_minutes")
    @classmethod
    def _steps_positive(cls, value: list[float]) -> list[float]:
        if not value:
            raise ValueError("at least one step is required")
        if any(step <= 0 for step in value):
            raise ValueError("steps must be positive minute offsets")
        return value

    @model_validator(mode="after")
    def _interval_bounds(self) -> "FsrsConfig":
        if self.minimum_interval_days > self.maximum_interval_days:
            raise ValueError("minimum_interval_days must not exceed maximum_interval_days")
        return self

    @property
    def first_learning_step_minutes(self) -> float:
        return self.learning_steps_minutes[0]

    @property
    def first_relearning_step_minutes(self) -> float:
        return self.relearning_steps_minutes[0]


def default_config() -> FsrsConfig:
    """Documented defaults, used when a user has no stored config."""
    return FsrsConfig()


def config_from_mapping(data: Optional[Mapping[str, Any]]) -> FsrsConfig:
    """
    Build a config from a stored row/dict, ignoring None values so that
    missing columns fall back to defaults.
    """
    if not data:
        return default_config()
    cleaned = {
        key: value for key, value in data.items()
        if key in FsrsConfig.model_fields and value is not None
    }
    # Overrides are legitimately None and must stay None
    for key in ("new_cards_per_day", "reviews_per_day"):
        if key in data:
            cleaned[key] = data[key]
    return FsrsConfig(**cleaned)
