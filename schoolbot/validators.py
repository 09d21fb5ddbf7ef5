"""
Input validation for the registration wizard — Pydantic v2 models.

Used to validate user-supplied text before anything is sent to the backend.
Keeps validation logic out of handler code and makes it trivially testable.
"""
from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")
_PHONE_RE = re.compile(r"^\+?\d{10,15}$")
_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y")


def _required(v: object) -> str:
    text = str(v).strip() if v is not None else ""
    if not text:
        raise ValueError("This field is required")
    return text


def _phone(v: str) -> str:
    compact = re.sub(r"[\s\-()]", "", v)
    if not _PHONE_RE.match(compact):
        raise ValueError("Phone must be 10 to 15 digits")
    return compact


def _admission_no(v: str) -> str:
    if len(v) < 5 or len(v) > 10:
        raise ValueError("Admission number must be 5 to 10 characters")
    return v


def new_entry_id() -> str:
    return uuid.uuid4().hex


def validation_errors(exc: ValidationError) -> dict[str, str]:
    """Flatten a pydantic ValidationError into {field: first message}."""
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = str(err["loc"][0]) if err.get("loc") else "__all__"
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        errors.setdefault(field, msg)
    return errors


class BasicInfoData(BaseModel):
    """
    Phase-1 payload validated before the account is created.

    Attributes
    ----------
    name, address          : free text, required
    email                  : standard address pattern
    birth_day              : ISO date (dd.mm.yyyy and dd/mm/yyyy also accepted)
    contact                : 10–15 digits
    role                   : Teacher / Student / Parent
    username               : 3–20 chars
    password               : at least 6 chars, must equal password_confirmation
    gender                 : Male / Female
    """

    name: str
    email: str
    address: str
    birth_day: date
    contact: str
    role: Literal["Teacher", "Student", "Parent"]
    username: str
    password: str
    password_confirmation: str
    gender: Literal["Male", "Female"]

    @field_validator("name", "email", "address", "contact", "username", mode="before")
    @classmethod
    def strip_required(cls, v: object) -> str:
        return _required(v)

    @field_validator("password", "password_confirmation", mode="before")
    @classmethod
    def password_present(cls, v: object) -> str:
        if v is None or str(v) == "":
            raise ValueError("This field is required")
        return str(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v.lower()

    @field_validator("birth_day", mode="before")
    @classmethod
    def parse_birth_day(cls, v: object) -> object:
        if isinstance(v, date):
            return v
        text = _required(v)
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise ValueError("Birthday must be a date like 2010-05-31")

    @field_validator("contact")
    @classmethod
    def validate_contact(cls, v: str) -> str:
        return _phone(v)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        if len(v) > 20:
            raise ValueError("Username must be less than 20 characters")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 6:
            raise ValueError("Password must be at least 6 characters")
        return v

    @field_validator("password_confirmation")
    @classmethod
    def passwords_match(cls, v: str, info: ValidationInfo) -> str:
        password = info.data.get("password")
        if password is not None and v != password:
            raise ValueError("Passwords don't match")
        return v


class TeacherAssignment(BaseModel):
    """One grade / class / subject / medium a teacher will teach."""

    id: str = Field(default_factory=new_entry_id)
    grade: str
    class_name: str
    subject: str
    medium: str

    @field_validator("grade", "class_name", "subject", "medium", mode="before")
    @classmethod
    def strip_required(cls, v: object) -> str:
        return _required(v)

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.grade, self.class_name, self.subject, self.medium)

    @property
    def label(self) -> str:
        return f"{self.grade} {self.class_name} · {self.subject} ({self.medium})"


class ParentLink(BaseModel):
    """Parent-to-child link, keyed by the child's admission number."""

    id: str = Field(default_factory=new_entry_id)
    student_admission_no: str
    profession: str
    relation: str
    parent_contact: str

    @field_validator(
        "student_admission_no", "profession", "relation", "parent_contact", mode="before"
    )
    @classmethod
    def strip_required(cls, v: object) -> str:
        return _required(v)

    @field_validator("student_admission_no")
    @classmethod
    def validate_admission_no(cls, v: str) -> str:
        return _admission_no(v)

    @field_validator("parent_contact")
    @classmethod
    def validate_contact(cls, v: str) -> str:
        return _phone(v)

    @property
    def key(self) -> tuple[str, str]:
        # One child may be linked twice only under different relations
        return (self.student_admission_no.casefold(), self.relation.casefold())

    @property
    def label(self) -> str:
        return f"#{self.student_admission_no} · {self.relation} · {self.profession}"


class StudentRecord(BaseModel):
    """Single student record submitted for the Student role."""

    student_grade: str
    student_class: str
    medium: str
    student_admission_no: str
    parent_contact: str
    parent_profession: str

    @field_validator(
        "student_grade", "student_class", "medium",
        "student_admission_no", "parent_contact", "parent_profession",
        mode="before",
    )
    @classmethod
    def strip_required(cls, v: object) -> str:
        return _required(v)

    @field_validator("student_admission_no")
    @classmethod
    def validate_admission_no(cls, v: str) -> str:
        return _admission_no(v)

    @field_validator("parent_contact")
    @classmethod
    def validate_contact(cls, v: str) -> str:
        return _phone(v)
