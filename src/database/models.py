"""SQLAlchemy models for tenants, agents, calls and the agent event log."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base

from src.utils.helpers import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class CallStatus:
    INCOMING = "incoming"
    TRANSFERRED_TO_TEAM = "transferred_to_team"
    CONNECTED_TO_AGENT = "connected_to_agent"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (INCOMING, TRANSFERRED_TO_TEAM, CONNECTED_TO_AGENT, COMPLETED, FAILED)
    TERMINAL = (COMPLETED, FAILED)


class Organization(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=_uuid)
    slug = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Agent(Base):
    __tablename__ = "agents"

    id = Column(String, primary_key=True, default=_uuid)
    organization_id = Column(String, ForeignKey("organisations.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    rules = Column(JSON, nullable=True)
    configuration = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class PhoneNumber(Base):
    __tablename__ = "phone_numbers"

    id = Column(String, primary_key=True, default=_uuid)
    organization_id = Column(String, ForeignKey("organisations.id"), index=True, nullable=False)
    phone_number = Column(String(20), index=True, nullable=False)
    agent_id = Column(String, ForeignKey("agents.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Call(Base):
    __tablename__ = "calls"

    id = Column(String, primary_key=True, default=_uuid)
    organization_id = Column(String, ForeignKey("organisations.id"), index=True, nullable=False)
    agent_id = Column(String, ForeignKey("agents.id"), index=True, nullable=True)

    # Correlation keys; the SID may be replaced once when the call is re-legged over SIP
    twilio_call_sid = Column(String, index=True, nullable=True)
    livekit_room_name = Column(String, unique=True, nullable=True)
    caller_phone_number = Column(String, index=True, nullable=True)
    trunk_phone_number = Column(String, nullable=True)

    status = Column(String, default=CallStatus.INCOMING, nullable=False)
    transfer_target = Column(String, nullable=True)

    # Populated at completion
    transcript = Column(JSON, nullable=True)
    usage_metrics = Column(JSON, nullable=True)
    config = Column(JSON, nullable=True)
    recording_url = Column(Text, nullable=True)
    egress_id = Column(String, nullable=True)
    latency_stats = Column(JSON, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)


class AgentEvent(Base):
    __tablename__ = "agent_events"
    __table_args__ = (Index("ix_agent_events_call_id_time", "call_id", "time"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_id = Column(String, ForeignKey("calls.id"), nullable=False)
    event_type = Column(String, index=True, nullable=False)
    time = Column(DateTime, default=utcnow, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
