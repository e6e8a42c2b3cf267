"""Pydantic views of participants as the scheduling engine sees them.

A participant is either a ``Provider`` (owns a calendar and weekly
availability) or a ``Consumer`` (books sessions). The union is discriminated
on ``kind`` so provider-only fields never appear on a consumer.
"""

from typing import Annotated, Literal, Optional, Union
from uuid import UUID
from pydantic import BaseModel, Field, field_validator


class TimeWindow(BaseModel):
    """Wall-clock window in the provider's offset."""
    start_time: str  # "09:00"
    end_time: str  # "12:00"


class DayAvailability(BaseModel):
    is_available: bool = False
    windows: list[TimeWindow] = Field(default_factory=list)
    # Legacy single window, used only when ``windows`` is empty
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    def effective_windows(self) -> list[TimeWindow]:
        if not self.is_available:
            return []
        if self.windows:
            return list(self.windows)
        if self.start_time and self.end_time:
            return [TimeWindow(start_time=self.start_time, end_time=self.end_time)]
        return []


class WeeklyAvailability(BaseModel):
    """Recurring availability keyed by ISO weekday (Monday=1 ... Sunday=7)."""
    days: dict[int, DayAvailability] = Field(default_factory=dict)

    @field_validator("days")
    @classmethod
    def _check_weekdays(cls, value: dict[int, DayAvailability]) -> dict[int, DayAvailability]:
        bad = [day for day in value if day < 1 or day > 7]
        if bad:
            raise ValueError(f"Weekday keys must be 1 (Monday) to 7 (Sunday), got {bad}")
        return value

    def for_weekday(self, iso_weekday: int) -> DayAvailability:
        return self.days.get(iso_weekday, DayAvailability())


class ParticipantBase(BaseModel):
    id: UUID
    display_name: str
    phone: Optional[str] = None
    timezone_offset_minutes: int = 0


class Provider(ParticipantBase):
    kind: Literal["provider"] = "provider"
    weekly_availability: WeeklyAvailability = Field(default_factory=WeeklyAvailability)
    session_rate: Optional[int] = None


class Consumer(ParticipantBase):
    kind: Literal["consumer"] = "consumer"


ParticipantProfile = Annotated[Union[Provider, Consumer], Field(discriminator="kind")]
