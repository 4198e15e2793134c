from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from timekeeping.models import AuditActionType, LeaveGrantStatus, SummaryState


class DayClassificationRead(BaseModel):
    work_date: date
    status: str
    late_minutes: int = Field(ge=0)
    early_leave_minutes: int = Field(ge=0)
    day_credit: Literal["FULL", "HALF", "NONE"]
    credit_units: float


class MonthClassificationResponse(BaseModel):
    user_id: int
    year: int
    month: int
    days: list[DayClassificationRead]
    late_days: int
    early_leave_days: int
    absent_days: int


class LeaveMonthlySummaryRead(BaseModel):
    user_id: int
    year: int
    month: int
    expected_units: float
    worked_units: float
    missing_units: float
    paid_used_units: float
    unpaid_units: float
    is_birthday: bool
    state: SummaryState
    adjust_reason: str | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RecalculateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class AdjustPaidLeaveRequest(BaseModel):
    paid_leave: float
    reason: str = Field(default="", max_length=2000)


class SessionEditRequest(BaseModel):
    check_in: str | None = None
    check_out: str | None = None
    reason: str = Field(default="", max_length=2000)


class SessionEditResponse(BaseModel):
    session_id: int
    classification: DayClassificationRead
    recalculation_required: bool = True


class AuditLogRead(BaseModel):
    id: int
    admin_user_id: int
    action_type: AuditActionType
    entity_type: str
    entity_id: str
    before_json: dict[str, Any] | None = None
    after_json: dict[str, Any] | None = None
    reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionCloseRequest(BaseModel):
    check_out: str
    reason: str = Field(default="", max_length=2000)


class LeaveGrantCreateRequest(BaseModel):
    user_id: int
    year: int
    month: int
    units: float
    note: str | None = Field(default=None, max_length=1000)


class LeaveGrantRead(BaseModel):
    id: int
    user_id: int
    year: int
    month: int
    units: float
    status: LeaveGrantStatus
    note: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkCalendarDayRead(BaseModel):
    work_date: date
    is_working_day: bool
    work_unit: float
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class WorkCalendarDayUpsertRequest(BaseModel):
    work_date: date
    is_working_day: bool
    work_unit: float = 1.0
    note: str | None = Field(default=None, max_length=255)


class WorkCalendarGenerateRequest(BaseModel):
    year: int


class WorkCalendarGenerateResponse(BaseModel):
    year: int
    created_days: int
