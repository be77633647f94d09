"""Validated per-campaign chase configuration.

Practice and campaign rows are loosely typed (nullable columns, free-text
business hours, JSON template maps). ChaseConfig turns them into one
validated object per campaign, built once per tick, so the orchestrator
never works from half-valid rows.
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from chase_core.domain.errors import ConfigError
from chase_core.domain.models import Campaign, Practice
from chase_core.domain.services.escalation import Channel
from chase_core.domain.services.scheduling import (
    parse_hhmm,
    resolve_timezone,
    validate_business_hours,
)


class ChaseConfig(BaseModel):
    """Everything the tick needs to know about a campaign and its practice."""

    model_config = ConfigDict(frozen=True)

    practice_id: int
    campaign_id: int
    practice_name: str = Field(min_length=1)

    max_chases: int = Field(ge=1)
    cadence_days: int = Field(ge=1)
    escalate_after: int
    skip_weekends: bool

    business_hours_start: str
    business_hours_end: str
    timezone: str

    default_channel: Channel
    tax_year: Optional[str] = None
    deadline_date: Optional[date] = None

    @field_validator("business_hours_start", "business_hours_end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        try:
            parse_hhmm(v)
        except ConfigError as e:
            raise ValueError(str(e))
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            resolve_timezone(v)
        except ConfigError as e:
            raise ValueError(str(e))
        return v

    @field_validator("default_channel", mode="before")
    @classmethod
    def parse_channel(cls, v: Any) -> Channel:
        channel = Channel.parse(v) if isinstance(v, str) else v
        if channel is None:
            raise ValueError(f"Unknown default chase channel: {v!r}")
        return channel

    @model_validator(mode="after")
    def validate_window(self) -> "ChaseConfig":
        try:
            validate_business_hours(self.business_hours_start, self.business_hours_end)
        except ConfigError as e:
            raise ValueError(str(e))
        return self

    @classmethod
    def from_rows(cls, campaign: Campaign, practice: Practice) -> "ChaseConfig":
        """Build the config for a campaign.

        Raises:
            ConfigError: If any field is missing or invalid.
        """
        try:
            return cls(
                practice_id=practice.id,
                campaign_id=campaign.id,
                practice_name=practice.name,
                max_chases=campaign.max_chases,
                cadence_days=campaign.chase_days_between,
                escalate_after=campaign.escalate_after_chase,
                skip_weekends=campaign.skip_weekends,
                business_hours_start=practice.business_hours_start,
                business_hours_end=practice.business_hours_end,
                timezone=practice.timezone,
                default_channel=practice.default_chase_channel,
                tax_year=campaign.tax_year,
                deadline_date=campaign.deadline_date,
            )
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration for campaign {campaign.id}: {errors}") from e


__all__ = ["ChaseConfig"]
