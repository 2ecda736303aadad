"""Call record persistence.

Each synchronous helper manages its own session; the async methods run them
on a worker thread under the configured timeout so a slow database surfaces
as a ``StorageFailure`` instead of hanging a telephony callback.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.calls.errors import StorageFailure
from src.database.models import Agent, Call, CallStatus, Organization, PhoneNumber
from src.utils.helpers import run_blocking
from src.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Repository:
    """Shared session handling for the store and the event recorder."""

    def __init__(self, session_factory: sessionmaker, timeout: Optional[float] = None):
        self.session_factory = session_factory
        self.timeout = timeout

    def _with_session(self, operation: str, work: Callable[[Session], T]) -> T:
        session = self.session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("DB %s failed: %s", operation, exc)
            raise StorageFailure(f"{operation} failed") from exc
        finally:
            session.close()

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await run_blocking(func, *args, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.error("DB %s timed out after %ss", operation, self.timeout)
            raise StorageFailure(f"{operation} timed out") from exc


class CallStore(Repository):
    """Call records plus the tenant/agent lookups the webhooks need."""

    # ── Sync helpers ─────────────────────────────────────────────────────

    def create_call_sync(
        self,
        organization_id: str,
        agent_id: Optional[str],
        caller_phone_number: Optional[str],
        trunk_phone_number: Optional[str],
        twilio_call_sid: Optional[str],
        created_at: Optional[datetime] = None,
    ) -> Call:
        def work(session: Session) -> Call:
            call = Call(
                organization_id=organization_id,
                agent_id=agent_id,
                caller_phone_number=caller_phone_number,
                trunk_phone_number=trunk_phone_number,
                twilio_call_sid=twilio_call_sid,
                status=CallStatus.INCOMING,
            )
            if created_at is not None:
                call.created_at = created_at
            session.add(call)
            session.flush()
            return call

        call = self._with_session("create_call", work)
        logger.info("Call record created: %s (sid=%s)", call.id, twilio_call_sid)
        return call

    def get_call_sync(self, call_id: str) -> Optional[Call]:
        return self._with_session("get_call", lambda session: session.get(Call, call_id))

    def find_by_room_name_sync(self, room_name: str) -> Optional[Call]:
        stmt = select(Call).where(Call.livekit_room_name == room_name)
        return self._with_session("find_by_room_name", lambda session: session.execute(stmt).scalar_one_or_none())

    def find_by_call_sid_sync(self, call_sid: str) -> Optional[Call]:
        stmt = (
            select(Call)
            .where(Call.twilio_call_sid == call_sid)
            .order_by(Call.created_at.desc())
            .limit(1)
        )
        return self._with_session("find_by_call_sid", lambda session: session.execute(stmt).scalars().first())

    def find_recent_for_caller_sync(self, agent_id: str, caller_phone_number: str, since: datetime) -> Optional[Call]:
        stmt = (
            select(Call)
            .where(
                Call.agent_id == agent_id,
                Call.caller_phone_number == caller_phone_number,
                Call.created_at >= since,
            )
            .order_by(Call.created_at.desc())
            .limit(1)
        )
        return self._with_session(
            "find_recent_for_caller", lambda session: session.execute(stmt).scalars().first()
        )

    def update_call_sync(self, call_id: str, fields: Dict[str, Any]) -> int:
        if not fields:
            return 0
        stmt = update(Call).where(Call.id == call_id).values(**fields)
        return self._with_session("update_call", lambda session: session.execute(stmt).rowcount)

    def lookup_agent_for_number_sync(self, phone_number: str) -> Optional[Agent]:
        stmt = (
            select(Agent)
            .join(PhoneNumber, PhoneNumber.agent_id == Agent.id)
            .where(PhoneNumber.phone_number == phone_number)
            .limit(1)
        )
        return self._with_session(
            "lookup_agent_for_number", lambda session: session.execute(stmt).scalars().first()
        )

    def get_organization_by_slug_sync(self, slug: str) -> Optional[Organization]:
        stmt = select(Organization).where(Organization.slug == slug)
        return self._with_session(
            "get_organization_by_slug", lambda session: session.execute(stmt).scalar_one_or_none()
        )

    # ── Async wrappers ───────────────────────────────────────────────────

    async def create_call(
        self,
        organization_id: str,
        agent_id: Optional[str],
        caller_phone_number: Optional[str],
        trunk_phone_number: Optional[str],
        twilio_call_sid: Optional[str],
    ) -> Call:
        return await self._run(
            "create_call",
            self.create_call_sync,
            organization_id,
            agent_id,
            caller_phone_number,
            trunk_phone_number,
            twilio_call_sid,
        )

    async def get_call(self, call_id: str) -> Optional[Call]:
        return await self._run("get_call", self.get_call_sync, call_id)

    async def find_by_room_name(self, room_name: str) -> Optional[Call]:
        return await self._run("find_by_room_name", self.find_by_room_name_sync, room_name)

    async def find_by_call_sid(self, call_sid: str) -> Optional[Call]:
        return await self._run("find_by_call_sid", self.find_by_call_sid_sync, call_sid)

    async def find_recent_for_caller(self, agent_id: str, caller_phone_number: str, since: datetime) -> Optional[Call]:
        return await self._run(
            "find_recent_for_caller", self.find_recent_for_caller_sync, agent_id, caller_phone_number, since
        )

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> int:
        return await self._run("update_call", self.update_call_sync, call_id, fields)

    async def lookup_agent_for_number(self, phone_number: str) -> Optional[Agent]:
        return await self._run("lookup_agent_for_number", self.lookup_agent_for_number_sync, phone_number)

    async def get_organization_by_slug(self, slug: str) -> Optional[Organization]:
        return await self._run("get_organization_by_slug", self.get_organization_by_slug_sync, slug)
