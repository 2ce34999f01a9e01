from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ScanResult(BaseModel):
    processed: int = 0
    updated: int = 0
    errors: int = 0

    def __add__(self, other: "ScanResult") -> "ScanResult":
        return ScanResult(
            processed=self.processed + other.processed,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
        )


class SchedulerConfig(BaseModel):
    enabled: bool = True
    status_check_interval_minutes: float = Field(5, gt=0)
    escalation_check_interval_minutes: float = Field(15, gt=0)
    batch_size: int = Field(100, gt=0)
    escalation_thresholds_minutes: list[int] = [60, 240]


class SchedulerConfigUpdate(BaseModel):
    enabled: bool | None = None
    status_check_interval_minutes: float | None = Field(None, gt=0)
    escalation_check_interval_minutes: float | None = Field(None, gt=0)
    batch_size: int | None = Field(None, gt=0)
    escalation_thresholds_minutes: list[int] | None = None


class SchedulerStatus(BaseModel):
    running: bool
    config: SchedulerConfig
    last_status_check_at: datetime | None
    last_escalation_check_at: datetime | None
    last_status_check_result: ScanResult | None
    last_escalation_check_result: ScanResult | None
    status_check_errors: int
    escalation_check_errors: int


class SchedulerRunRequest(BaseModel):
    check: Literal["status", "escalation", "all"] = "all"


class SchedulerRunResponse(BaseModel):
    status_check: ScanResult | None = None
    escalation_check: ScanResult | None = None
