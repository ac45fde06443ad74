# app/schemas/throttle.py
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional


class ThrottleConfigOut(BaseModel):
    enabled: bool
    process_ratio: float
    max_per_hour: int
    sampling_method: str
    description: str
    last_updated: str

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class HourlyStatOut(BaseModel):
    hour: str
    received: int
    processed: int
    skipped: int


class ThrottleStatsOut(BaseModel):
    total_received: int
    total_processed: int
    total_skipped: int
    last_hour_received: int
    last_hour_processed: int
    last_hour_skipped: int
    last_hour_admitted: int
    projected_if_no_throttle: int
    effective_ratio: float
    images_seen: int
    last_event_at: Optional[str] = None
    hourly_stats: list[HourlyStatOut] = []

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ThrottleConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    processRatio: Optional[float] = Field(default=None, ge=0, le=1)
    maxPerHour: Optional[int] = Field(default=None, ge=1)
    samplingMethod: Optional[str] = None
