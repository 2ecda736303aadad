"""Append-only agent event log."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.calls.errors import ValidationFailure
from src.calls.events import EventType
from src.database.call_store import Repository
from src.database.models import AgentEvent
from src.utils.helpers import utcnow
from src.utils.logger import get_logger

logger = get_logger(__name__)


class EventRecorder(Repository):
    """Stores every inbound fact about a call; rows are never updated or deleted."""

    def record_sync(
        self,
        call_id: str,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AgentEvent:
        kind = EventType.parse(event_type)
        if kind is None:
            raise ValidationFailure(f"unknown event type: {event_type}")

        def work(session: Session) -> AgentEvent:
            event = AgentEvent(
                call_id=call_id,
                event_type=kind.value,
                time=timestamp or utcnow(),
                data=payload or {},
            )
            session.add(event)
            session.flush()
            return event

        event = self._with_session("record_event", work)
        logger.info("Event '%s' stored for call %s", kind.value, call_id)
        return event

    def list_events_sync(
        self, call_id: str, event_types: Optional[Iterable[Union[EventType, str]]] = None
    ) -> List[AgentEvent]:
        stmt = select(AgentEvent).where(AgentEvent.call_id == call_id)
        if event_types is not None:
            names = [EventType(kind).value for kind in event_types]
            stmt = stmt.where(AgentEvent.event_type.in_(names))
        # Occurrence time, not arrival order; id breaks ties between equal timestamps
        stmt = stmt.order_by(AgentEvent.time.asc(), AgentEvent.id.asc())
        return self._with_session("list_events", lambda session: list(session.execute(stmt).scalars()))

    async def record(
        self,
        call_id: str,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AgentEvent:
        return await self._run("record_event", self.record_sync, call_id, event_type, payload, timestamp)

    async def list_events(
        self, call_id: str, event_types: Optional[Iterable[Union[EventType, str]]] = None
    ) -> List[AgentEvent]:
        return await self._run("list_events", self.list_events_sync, call_id, event_types)
