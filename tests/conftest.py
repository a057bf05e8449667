import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import date, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from saunabook.db.session import Base
from saunabook.db import models
from saunabook.services import notification_service

# A Monday, well clear of any DST change in Europe/London
MONDAY = date(2027, 1, 4)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    outbox = []

    def fake_send(messages):
        outbox.extend(messages)
        return len(messages)

    monkeypatch.setattr(notification_service, "send_emails", fake_send)
    return outbox


def make_organization(db, *, slug="nordic", timezone="Europe/London"):
    organization = models.Organization(name=slug.title(), slug=slug, timezone=timezone)
    db.add(organization)
    db.commit()
    return organization


def make_user(db, organization, *, email=None, role=models.UserRole.user):
    user = models.User(
        organization_id=organization.id,
        email=email or f"{role.value}-{organization.slug}@example.com",
        first_name="Test",
        role=role,
    )
    db.add(user)
    db.commit()
    return user


def make_template(
    db,
    organization,
    *,
    capacity=3,
    duration=60,
    days=(1,),
    at=time(9, 0),
    start=MONDAY,
    end=MONDAY,
    visibility=models.Visibility.open,
    created_by=None,
):
    template = models.SessionTemplate(
        organization_id=organization.id,
        created_by=created_by,
        name="Morning Sauna",
        capacity=capacity,
        duration_minutes=duration,
        visibility=visibility,
        is_recurring=True,
        recurrence_start_date=start,
        recurrence_end_date=end,
    )
    template.schedules = [
        models.SessionSchedule(day_of_week=day, time_of_day=at) for day in days
    ]
    db.add(template)
    db.commit()
    return template


def make_instance(db, template, start_time):
    instance = models.SessionInstance(
        template_id=template.id,
        organization_id=template.organization_id,
        start_time=start_time,
        end_time=start_time + timedelta(minutes=template.duration_minutes),
        status=models.InstanceStatus.scheduled,
    )
    db.add(instance)
    db.commit()
    return instance
