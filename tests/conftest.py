from __future__ import annotations

import uuid
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmguard.authz.models import AppRole, Team, TeamMember, TeamRole, UserRole
from crmguard.core.config import get_settings
from crmguard.core.database import Base, get_db
from crmguard.crm.models import Contact, Deal, Lead, Note, Task
from crmguard.platform.security.context import AuthContext


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@dataclass(frozen=True)
class Principals:
    admin: uuid.UUID
    manager: uuid.UUID
    user: uuid.UUID
    other: uuid.UUID


def grant(session: Session, user_id: uuid.UUID, role: AppRole) -> None:
    session.add(UserRole(user_id=user_id, role=role))
    session.commit()


def ctx_for(user_id: uuid.UUID | str | None, **kwargs: Any) -> AuthContext:
    return AuthContext(user_id=str(user_id) if user_id is not None else None, **kwargs)


@pytest.fixture()
def principals(db_session: Session) -> Principals:
    people = Principals(admin=uuid.uuid4(), manager=uuid.uuid4(), user=uuid.uuid4(), other=uuid.uuid4())
    grant(db_session, people.admin, AppRole.ADMIN)
    grant(db_session, people.manager, AppRole.MANAGER)
    grant(db_session, people.user, AppRole.USER)
    # ``other`` has no assignment and resolves to the default role.
    return people


def make_lead(session: Session, owner_id: uuid.UUID | None, **values: Any) -> Lead:
    lead = Lead(name=values.pop("name", "Inbound lead"), owner_id=owner_id, **values)
    session.add(lead)
    session.commit()
    return lead


def make_contact(session: Session, owner_id: uuid.UUID | None, **values: Any) -> Contact:
    contact = Contact(first_name=values.pop("first_name", "Ada"), owner_id=owner_id, **values)
    session.add(contact)
    session.commit()
    return contact


def make_deal(session: Session, owner_id: uuid.UUID | None, **values: Any) -> Deal:
    deal = Deal(name=values.pop("name", "Wedding package"), owner_id=owner_id, **values)
    session.add(deal)
    session.commit()
    return deal


def make_task(session: Session, assigned_to: uuid.UUID, created_by: uuid.UUID, **values: Any) -> Task:
    task = Task(title=values.pop("title", "Call back"), assigned_to=assigned_to, created_by=created_by, **values)
    session.add(task)
    session.commit()
    return task


def make_note(session: Session, created_by: uuid.UUID, **values: Any) -> Note:
    note = Note(content=values.pop("content", "Prefers email"), created_by=created_by, **values)
    session.add(note)
    session.commit()
    return note


def make_team(session: Session, owner_id: uuid.UUID, name: str = "Sales") -> Team:
    team = Team(name=name, owner_id=owner_id)
    session.add(team)
    session.flush()
    session.add(TeamMember(team_id=team.id, user_id=owner_id, role=TeamRole.OWNER))
    session.commit()
    return team


def add_member(session: Session, team: Team, user_id: uuid.UUID, role: TeamRole = TeamRole.MEMBER) -> TeamMember:
    member = TeamMember(team_id=team.id, user_id=user_id, role=role)
    session.add(member)
    session.commit()
    return member


def bearer(user_id: uuid.UUID | str) -> dict[str, str]:
    settings = get_settings()
    token = jwt.encode({"sub": str(user_id)}, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    from crmguard.main import app

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

