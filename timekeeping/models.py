from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timekeeping.db import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class SessionStatus(str, enum.Enum):
    NOT_CHECKED_IN = "NOT_CHECKED_IN"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MISSING = "MISSING"


class LeaveGrantStatus(str, enum.Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


class SummaryState(str, enum.Enum):
    COMPUTED = "COMPUTED"
    ADJUSTED = "ADJUSTED"


class AuditActionType(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CLOSE = "CLOSE"
    ADJUST = "ADJUST"
    RECALCULATE = "RECALCULATE"
    GRANT = "GRANT"
    GENERATE = "GENERATE"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    birthday: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_leave_balance: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
        server_default=text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    sessions: Mapped[list[AttendanceSession]] = relationship(back_populates="user")
    leave_grants: Mapped[list[LeaveGrant]] = relationship(back_populates="user")


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"
    __table_args__ = (UniqueConstraint("user_id", "work_date", name="uq_attendance_sessions_user_work_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, name="attendance_session_status"),
        nullable=False,
        default=SessionStatus.OPEN,
    )
    worked_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    day_unit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    checkout_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship(back_populates="sessions")


class WorkCalendarDay(Base):
    __tablename__ = "work_calendar"

    work_date: Mapped[date] = mapped_column(Date, primary_key=True)
    is_working_day: Mapped[bool] = mapped_column(Boolean, nullable=False)
    work_unit: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, server_default=text("1.0"))
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)


class LeaveGrant(Base):
    __tablename__ = "leave_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    units: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    status: Mapped[LeaveGrantStatus] = mapped_column(
        Enum(LeaveGrantStatus, name="leave_grant_status"),
        nullable=False,
        default=LeaveGrantStatus.APPROVED,
    )
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(back_populates="leave_grants")


class LeaveMonthlySummary(Base):
    __tablename__ = "leave_monthly_summary"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[int] = mapped_column(Integer, primary_key=True)
    expected_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    worked_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    missing_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    paid_used_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unpaid_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_birthday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    state: Mapped[SummaryState] = mapped_column(
        Enum(SummaryState, name="leave_summary_state"),
        nullable=False,
        default=SummaryState.COMPUTED,
    )
    adjust_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditLog(Base):
    __tablename__ = "admin_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    admin_user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    action_type: Mapped[AuditActionType] = mapped_column(
        Enum(AuditActionType, name="audit_action_type"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
