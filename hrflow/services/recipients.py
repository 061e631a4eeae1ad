from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
import logging
import re

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from hrflow.models import AppUser, Employee, UserRole

logger = logging.getLogger("hrflow.recipients")

ADMINISTRATIVE_ROLES: tuple[str, ...] = ("Admin", "Super Admin", "HR")

# Membership queries are issued with at most this many values per IN clause.
QUERY_IN_CHUNK_SIZE = 10

EMAIL_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_NON_DIGIT_PATTERN = re.compile(r"\D")


@dataclass(slots=True)
class RecipientSet:
    emails: set[str] = field(default_factory=set)
    phones: set[str] = field(default_factory=set)
    user_ids: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not (self.emails or self.phones or self.user_ids)


@dataclass(frozen=True, slots=True)
class EmployeeContact:
    employee_id: str
    name: str
    email: str | None = None
    phone: str | None = None
    user_id: str | None = None
    employee_code: str | None = None

    def as_recipients(self) -> RecipientSet:
        return RecipientSet(
            emails={self.email} if self.email else set(),
            phones={self.phone} if self.phone else set(),
            user_ids={self.user_id} if self.user_id else set(),
        )


def normalize_email(value: str | None) -> str | None:
    normalized = " ".join((value or "").strip().lower().split())
    if not normalized or not EMAIL_ADDRESS_PATTERN.match(normalized):
        return None
    return normalized


def normalize_phone(value: str | None) -> str | None:
    """Reduce a phone number to its digits, the form the WhatsApp gateway expects.

    ``"+880 1711-000000"`` and ``"+8801711000000"`` both become
    ``"8801711000000"``, so one number kept in two formats is only
    messaged once.
    """
    normalized = PHONE_NON_DIGIT_PATTERN.sub("", value or "")
    if not normalized:
        return None
    return normalized


def chunked(values: Sequence[str], size: int = QUERY_IN_CHUNK_SIZE) -> Iterator[list[str]]:
    for index in range(0, len(values), size):
        yield list(values[index : index + size])


def _distinct_values(values: Iterable[str | None]) -> list[str]:
    return sorted({item.strip() for item in values if item and item.strip()})


def _users_with_any_role(db: Session, roles: Sequence[str]) -> list[AppUser]:
    users_by_id: dict[str, AppUser] = {}
    for chunk in chunked(list(roles)):
        stmt = (
            select(AppUser)
            .join(UserRole, UserRole.user_id == AppUser.id)
            .where(UserRole.role.in_(chunk), AppUser.is_active.is_(True))
            .distinct()
        )
        for user in db.scalars(stmt).all():
            users_by_id[user.id] = user
    return list(users_by_id.values())


def _employees_by_emails(db: Session, emails: Sequence[str]) -> list[Employee]:
    employees: list[Employee] = []
    for chunk in chunked(list(emails)):
        stmt = select(Employee).where(func.lower(Employee.email).in_(chunk))
        employees.extend(db.scalars(stmt).all())
    return employees


def resolve_by_role(db: Session, roles: Iterable[str]) -> RecipientSet:
    """Collect contacts of every active user holding any of ``roles``.

    User accounts often lack a phone number that the matching employee
    profile has, so employees sharing an email with a matched user backfill
    phones. Values are normalized before the union, which keeps the same
    address or number from appearing twice.
    """
    role_list = _distinct_values(roles)
    if not role_list:
        return RecipientSet()

    users = _users_with_any_role(db, role_list)
    result = RecipientSet()
    for user in users:
        result.user_ids.add(user.id)
        email = normalize_email(user.email)
        if email:
            result.emails.add(email)
        phone = normalize_phone(user.phone)
        if phone:
            result.phones.add(phone)

    if result.emails:
        for employee in _employees_by_emails(db, sorted(result.emails)):
            email = normalize_email(employee.email)
            if email:
                result.emails.add(email)
            phone = normalize_phone(employee.phone)
            if phone:
                result.phones.add(phone)
    return result


def safe_resolve_by_role(db: Session, roles: Iterable[str]) -> RecipientSet:
    role_list = list(roles)
    try:
        return resolve_by_role(db, role_list)
    except Exception as exc:
        logger.warning(
            "recipient_resolution_failed",
            extra={"roles": role_list, "error": str(exc)[:500]},
        )
        rollback = getattr(db, "rollback", None)
        if callable(rollback):
            rollback()
        return RecipientSet()


def _user_id_for_employee(db: Session, employee: Employee) -> str | None:
    if employee.user_id:
        return employee.user_id
    email = normalize_email(employee.email)
    if not email:
        return None
    return db.scalar(
        select(AppUser.id).where(func.lower(AppUser.email) == email).limit(1)
    )


def employee_display_name(employee: Employee, fallback: str = "Employee") -> str:
    return (employee.full_name or "").strip() or fallback


def _contact_for_employee(db: Session, employee: Employee) -> EmployeeContact:
    return EmployeeContact(
        employee_id=employee.id,
        name=employee_display_name(employee),
        email=normalize_email(employee.email),
        phone=normalize_phone(employee.phone),
        user_id=_user_id_for_employee(db, employee),
        employee_code=employee.employee_code,
    )


def resolve_by_employee_id(db: Session, employee_id: str | None) -> EmployeeContact | None:
    if not employee_id:
        return None
    employee = db.get(Employee, employee_id)
    if employee is None:
        return None
    return _contact_for_employee(db, employee)


def resolve_task_assignees(db: Session, identifiers: Iterable[str]) -> list[EmployeeContact]:
    """Resolve assignees given either employee codes or employee ids.

    Callers are inconsistent about which identifier they send, so both
    schemes are queried and merged by employee id.
    """
    values = _distinct_values(identifiers)
    if not values:
        return []

    employees: dict[str, Employee] = {}
    for chunk in chunked(values):
        for employee in db.scalars(select(Employee).where(Employee.employee_code.in_(chunk))).all():
            employees.setdefault(employee.id, employee)
    for chunk in chunked(values):
        for employee in db.scalars(select(Employee).where(Employee.id.in_(chunk))).all():
            employees.setdefault(employee.id, employee)

    return [_contact_for_employee(db, employee) for employee in employees.values()]

