from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hrflow import models
from hrflow.db import Base
from hrflow.services.channels import DeliveryError, DeliveryResult, NotificationChannel, NotificationMessage


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def override_get_db(session_factory: sessionmaker):
    def _override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _override


def add_user(
    db: Session,
    user_id: str,
    *,
    roles: list[str],
    email: str | None = None,
    phone: str | None = None,
    is_active: bool = True,
) -> models.AppUser:
    user = models.AppUser(id=user_id, email=email, phone=phone, is_active=is_active)
    user.roles = [models.UserRole(role=role) for role in roles]
    db.add(user)
    db.commit()
    return user


def add_template(
    db: Session,
    channel: str,
    slug: str,
    *,
    subject: str | None,
    body: str,
    is_active: bool = True,
) -> models.MessageTemplate:
    template = models.MessageTemplate(channel=channel, slug=slug, subject=subject, body=body, is_active=is_active)
    db.add(template)
    db.commit()
    return template


class RecordingChannel(NotificationChannel):
    def __init__(self, name: str, *, failing: set[str] | None = None):
        self.name = name
        self.failing = failing or set()
        self.sent: list[tuple[str, NotificationMessage]] = []

    def send(self, destination: str, message: NotificationMessage) -> DeliveryResult:
        if destination in self.failing:
            raise DeliveryError(f"rejected {destination}")
        self.sent.append((destination, message))
        return DeliveryResult(success=True, provider_message_id=f"{self.name}-{len(self.sent)}")
