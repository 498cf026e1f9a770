from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints, field_validator

HHMM = Annotated[str, StringConstraints(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")]


class TimeRangeIn(BaseModel):
    start_time: HHMM
    end_time: HHMM


class WeeklyTemplateRequest(BaseModel):
    # weekday (0 = Sunday ... 6 = Saturday) -> hours; missing days are unavailable
    template: dict[int, TimeRangeIn]

    @field_validator("template")
    @classmethod
    def _weekday_keys(cls, v: dict[int, TimeRangeIn]) -> dict[int, TimeRangeIn]:
        bad = [k for k in v if not 0 <= k <= 6]
        if bad:
            raise ValueError(f"weekday keys must be 0-6, got {bad}")
        return v


class AvailabilitySettingsRequest(BaseModel):
    appointment_duration_minutes: int | None = Field(default=None, ge=5, le=480)
    break_range: TimeRangeIn | None = None
    clear_break: bool = False


class SpecificDateRequest(BaseModel):
    is_available: bool
    time_range: TimeRangeIn | None = None


class ExceptionRequest(BaseModel):
    is_available: bool = False
    reason: str | None = Field(default=None, max_length=500)


class SlotInfo(BaseModel):
    time: str
    end_time: str
    available: bool


class SlotsResponse(BaseModel):
    doctor_id: str
    hospital_id: str
    date: str  # YYYY-MM-DD
    slots: list[SlotInfo]
