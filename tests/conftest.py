"""Shared fixtures: an in-memory database and an app wired to it."""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from src.api.main import create_app
from src.database.models import Agent, Base, Organization, PhoneNumber

AGENT_NUMBER = "+15559876543"
CALLER = "+15551234567"
TEAM_NUMBER = "+15550001111"


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by the worker threads the store runs on."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


@pytest.fixture
def test_settings():
    return Settings(
        environment="test",
        public_base_url="https://calls.example.com",
        livekit_sip_endpoint="sip.example.com",
        livekit_sip_username="lk-user",
        livekit_sip_password="lk-pass",
        database_url="sqlite://",
    )


@pytest.fixture
def seeded(session_factory):
    """Two organisations; the first owns an agent answering AGENT_NUMBER."""
    session = session_factory()
    org = Organization(slug="acme", name="Acme")
    other = Organization(slug="globex", name="Globex")
    session.add_all([org, other])
    session.flush()
    agent = Agent(organization_id=org.id, name="Reception")
    session.add(agent)
    session.flush()
    session.add(PhoneNumber(organization_id=org.id, phone_number=AGENT_NUMBER, agent_id=agent.id))
    session.commit()
    ids = SimpleNamespace(org_id=org.id, other_org_id=other.id, agent_id=agent.id)
    session.close()
    return ids


@pytest.fixture
def app(test_settings, session_factory, seeded):
    return create_app(test_settings, session_factory)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def client(app):
    return TestClient(app)
