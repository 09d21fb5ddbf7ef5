"""
Domain constants and ORM models for the school registration bot.

Domain overview
---------------
Role            — account role chosen in the first wizard step
Medium          — language of instruction attached to assignments
OrphanedAccount — a phase-1 account whose compensating delete failed;
                  retried on the next bot launch
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from schoolbot.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class Role:
    TEACHER = "Teacher"
    STUDENT = "Student"
    PARENT  = "Parent"

    ALL = (TEACHER, STUDENT, PARENT)

    LABELS = {
        TEACHER: "👩‍🏫 Teacher",
        STUDENT: "🎒 Student",
        PARENT:  "👪 Parent",
    }


class Gender:
    MALE   = "Male"
    FEMALE = "Female"

    ALL = (MALE, FEMALE)


class Medium:
    SINHALA = "Sinhala"
    ENGLISH = "English"
    TAMIL   = "Tamil"

    ALL = (SINHALA, ENGLISH, TAMIL)


class LandingView:
    MANAGEMENT_STAFF_REPORT = "managementStaffReport"
    CLASS_TEACHER_REPORT    = "classTeacherReport"
    PARENT_REPORT           = "parentReport"
    UNAUTHORIZED            = "unauthorized"

    LABELS = {
        MANAGEMENT_STAFF_REPORT: "📊 Management staff report",
        CLASS_TEACHER_REPORT:    "📘 Class teacher report",
        PARENT_REPORT:           "👪 Parent report",
        UNAUTHORIZED:            "⛔️ Unauthorized",
    }


# ─────────────────────────── Models ───────────────────────────────────────────

class OrphanedAccount(Base):
    """Account left on the backend after a failed compensating delete."""
    __tablename__ = "orphaned_accounts"

    id:           Mapped[int]                = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id:   Mapped[str]                = mapped_column(String(64), index=True)
    account_role: Mapped[str]                = mapped_column(String(20))   # Role.*
    reason:       Mapped[Optional[str]]      = mapped_column(String(500), nullable=True)
    attempts:     Mapped[int]                = mapped_column(Integer, default=1)
    created_at:   Mapped[datetime]           = mapped_column(DateTime, default=func.now())
    resolved_at:  Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
