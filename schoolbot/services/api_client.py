"""
HTTP client for the school backend.

Every external call goes through one method here, and every response shape
the backend is known to produce (bare arrays, `{"data": ...}` wrappers,
`{"user": ...}` envelopes, `id` vs `userId`) is normalised to one internal
type before it leaves this module.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from schoolbot.validators import BasicInfoData, ParentLink, StudentRecord, TeacherAssignment

logger = logging.getLogger(__name__)

GENERIC_NETWORK_ERROR = "Network error. Please check your connection and try again."

# Backend field name → wizard field name
_FIELD_ALIASES = {
    "birthDay": "birth_day",
    "userType": "role",
    "password_confirmation": "password_confirmation",
    "studentAdmissionNo": "student_admission_no",
    "parentContact": "parent_contact",
    "staffNo": "staff_no",
}


# ── Errors ────────────────────────────────────────────────────────────────────

class ApiError(Exception):
    """Backend rejected a request or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        field_errors: Optional[dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.field_errors = field_errors or {}


class NetworkError(ApiError):
    """Transport failure or timeout; no response body available."""

    def __init__(self, message: str = GENERIC_NETWORK_ERROR) -> None:
        super().__init__(message)


class UnauthorizedError(ApiError):
    """401 — the session token is missing, expired or revoked."""


# ── Canonical types ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccountRef:
    account_id: str
    account_role: str


@dataclass(frozen=True)
class Subject:
    main_subject: str
    sub_subject: str
    medium: str
    grade: str


# ── Normalisation ─────────────────────────────────────────────────────────────

def extract_error_message(payload: Any, fallback: str) -> str:
    """Human-readable message from an error body: message → error → first field error."""
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        field_errors = extract_field_errors(payload)
        if field_errors:
            return next(iter(field_errors.values()))
    return fallback


def extract_field_errors(payload: Any) -> dict[str, str]:
    """Map a `{"errors": {field: [msg, ...]}}` body to {wizard_field: msg}."""
    if not isinstance(payload, dict):
        return {}
    raw = payload.get("errors")
    if not isinstance(raw, dict):
        return {}
    errors: dict[str, str] = {}
    for field, messages in raw.items():
        if isinstance(messages, (list, tuple)):
            message = next((str(m) for m in messages if m), "")
        else:
            message = str(messages) if messages else ""
        if message:
            errors[_FIELD_ALIASES.get(field, field)] = message
    return errors


def unwrap_list(payload: Any) -> list:
    """Accept `[...]`, `{"data": [...]}` or any single-list envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        lists = [v for v in payload.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    return []


def normalize_account(payload: Any, fallback_role: str) -> AccountRef:
    record = payload
    if isinstance(record, dict):
        for envelope in ("user", "data"):
            if isinstance(record.get(envelope), dict):
                record = record[envelope]
                break
    if not isinstance(record, dict):
        raise ApiError("Unexpected registration response from server")

    account_id = record.get("userId", record.get("id"))
    if account_id in (None, ""):
        raise ApiError("Registration response did not include an account id")
    role = record.get("userType") or fallback_role
    return AccountRef(account_id=str(account_id), account_role=str(role))


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        if v and v not in seen:
            seen[v] = None
    return list(seen)


def normalize_grades(payload: Any) -> list[str]:
    items = unwrap_list(payload)
    return _unique(
        str(item.get("grade", "")) if isinstance(item, dict) else str(item)
        for item in items
    )


def normalize_classes(payload: Any) -> list[str]:
    items = unwrap_list(payload)
    return _unique(
        str(item.get("class") or item.get("className") or "") if isinstance(item, dict) else str(item)
        for item in items
    )


def normalize_subjects(payload: Any) -> list[Subject]:
    subjects = []
    for item in unwrap_list(payload):
        if not isinstance(item, dict) or not item.get("mainSubject"):
            continue
        subjects.append(Subject(
            main_subject=str(item["mainSubject"]),
            sub_subject=str(item.get("subSubject") or ""),
            medium=str(item.get("medium") or ""),
            grade=str(item.get("grade") or ""),
        ))
    return subjects


def _body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


# ── Client ────────────────────────────────────────────────────────────────────

class SchoolApiClient:
    """Async wrapper around the Account, Role-Detail, Reference and Auth endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        fallback: str,
        token: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        **kwargs: Any,
    ) -> Any:
        request_headers = dict(headers or {})
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, path, headers=request_headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkError() from exc

        payload = _body(response)
        if response.status_code == 401:
            raise UnauthorizedError(
                extract_error_message(payload, "Your session has expired. Please log in again."),
                status_code=401,
            )
        if response.is_error:
            logger.info("%s %s → %d", method, path, response.status_code)
            raise ApiError(
                extract_error_message(payload, fallback),
                status_code=response.status_code,
                field_errors=extract_field_errors(payload),
            )
        return payload

    # ── Account Service ───────────────────────────────────────────────────────

    async def create_account(self, info: BasicInfoData) -> AccountRef:
        form = {
            "name": info.name,
            "email": info.email,
            "address": info.address,
            "birthDay": info.birth_day.isoformat(),
            "contact": info.contact,
            "userType": info.role,
            "username": info.username,
            "password": info.password,
            "password_confirmation": info.password_confirmation,
            "gender": info.gender,
            "userRole": "user",
        }
        payload = await self._request(
            "POST", "/api/user-register", data=form, fallback="Registration failed",
        )
        return normalize_account(payload, info.role)

    async def delete_account(self, account_id: str, account_role: str) -> None:
        await self._request(
            "DELETE", "/api/delete-register",
            json={"userId": account_id},
            headers={"userId": account_id, "userType": account_role},
            fallback="Failed to clear user data",
        )

    # ── Role-Detail Service ───────────────────────────────────────────────────

    async def submit_teacher_assignments(
        self,
        account_id: str,
        account_role: str,
        staff_no: str,
        assignments: list[TeacherAssignment],
    ) -> None:
        body = {
            "teacherData": [
                {
                    "teacherGrade": a.grade,
                    "teacherClass": a.class_name,
                    "subject": a.subject,
                    "medium": a.medium,
                    "staffNo": staff_no,
                    "userId": account_id,
                    "userType": account_role,
                }
                for a in assignments
            ]
        }
        await self._request(
            "POST", "/api/user-teacher-register",
            json=body, fallback="Teacher registration failed",
        )

    async def submit_student_record(
        self,
        account_id: str,
        account_role: str,
        record: StudentRecord,
    ) -> None:
        body = {
            "studentGrade": record.student_grade,
            "studentClass": record.student_class,
            "medium": record.medium,
            "studentAdmissionNo": record.student_admission_no,
            "parentContact": record.parent_contact,
            "parentProfession": record.parent_profession,
        }
        await self._request(
            "POST", "/api/user-student-register",
            json=body,
            headers={"userId": account_id, "userType": account_role},
            fallback="Student registration failed",
        )

    async def submit_parent_links(
        self,
        account_id: str,
        account_role: str,
        links: list[ParentLink],
    ) -> None:
        body = {
            "parentData": [
                {
                    "studentAdmissionNo": link.student_admission_no,
                    "profession": link.profession,
                    "relation": link.relation,
                    "parentContact": link.parent_contact,
                    "userId": account_id,
                    "userType": account_role,
                    "status": True,
                }
                for link in links
            ]
        }
        await self._request(
            "POST", "/api/user-parent-register",
            json=body, fallback="Parent registration failed",
        )

    # ── Reference-Data Service ────────────────────────────────────────────────

    async def list_grades(self) -> list[str]:
        payload = await self._request("GET", "/api/grades", fallback="Failed to load grades")
        return normalize_grades(payload)

    async def list_classes(self) -> list[str]:
        payload = await self._request("GET", "/api/grade-classes", fallback="Failed to load classes")
        return normalize_classes(payload)

    async def list_subjects(self) -> list[Subject]:
        payload = await self._request("GET", "/api/subjects", fallback="Failed to load subjects")
        return normalize_subjects(payload)

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def login(self, username: str, password: str) -> dict:
        payload = await self._request(
            "POST", "/api/login",
            json={"username": username, "password": password},
            fallback="Login failed. Please try again.",
        )
        return payload if isinstance(payload, dict) else {}

    async def current_user(self, token: str) -> dict:
        payload = await self._request(
            "GET", "/api/user", token=token, fallback="Validation failed",
        )
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            return payload["user"]
        return payload if isinstance(payload, dict) else {}

    async def logout(self, token: str) -> None:
        await self._request("POST", "/api/logout", token=token, json={}, fallback="Logout failed")
