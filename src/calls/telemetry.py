"""Ingestion of events posted by the voice-agent runtime."""

from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from src.calls.errors import ValidationFailure
from src.calls.events import CallEvent, EventType, TelemetryEnvelope
from src.calls.reconciler import SessionReconciler
from src.calls.resolver import CallResolver, ResolveCriteria
from src.utils.helpers import parse_timestamp
from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class TelemetryResult:
    call_id: str
    event_type: EventType


class AgentTelemetry:
    def __init__(self, resolver: CallResolver, reconciler: SessionReconciler):
        self.resolver = resolver
        self.reconciler = reconciler

    @staticmethod
    def parse(body: Any) -> TelemetryEnvelope:
        if not isinstance(body, dict):
            raise ValidationFailure("event body must be a JSON object")
        if not body.get("type"):
            raise ValidationFailure("Missing event type")
        try:
            return TelemetryEnvelope.model_validate(body)
        except ValidationError as exc:
            raise ValidationFailure(f"malformed event: {exc.errors()[0]['msg']}") from exc

    async def ingest(self, agent_id: Optional[str], body: Any) -> TelemetryResult:
        """Resolve, record and reconcile one runtime event.

        Raises ``ValidationFailure`` for bad envelopes, ``CallNotFound`` when no
        call matches and ``StorageFailure`` when the event could not be stored.
        """
        envelope = self.parse(body)
        event_type = EventType.parse(envelope.type)
        if event_type is None:
            raise ValidationFailure(f"unknown event type: {envelope.type}")

        call = await self.resolver.resolve(
            ResolveCriteria(
                room_name=envelope.room_name,
                twilio_call_sid=envelope.twilio_call_sid,
                agent_id=agent_id,
                caller_phone_number=envelope.caller_phone_number,
            )
        )

        data = dict(envelope.data)
        if event_type == EventType.ROOM_CONNECTED and envelope.room_name:
            data.setdefault("roomName", envelope.room_name)

        event = CallEvent(
            event_type=event_type,
            data=data,
            twilio_call_sid=envelope.twilio_call_sid,
            timestamp=parse_timestamp(envelope.timestamp),
        )
        await self.reconciler.handle(call, event, stored_payload=envelope.stored_payload)
        return TelemetryResult(call_id=call.id, event_type=event_type)
