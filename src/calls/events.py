"""Agent event taxonomy and typed payloads.

Telephony webhooks and the voice-agent runtime both report facts about a
call as ``(event_type, payload)`` pairs. The event type is a closed
enumeration; payloads are stored opaquely. Only the types the reconciler and
the latency aggregator branch on get a typed payload model, everything else
passes through as a plain dict.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    # Routing
    CALL_INCOMING = "call_incoming"
    TRANSFERRED_TO_TEAM = "transferred_to_team"
    TEAM_NO_ANSWER_FALLBACK = "team_no_answer_fallback"
    ROUTED_TO_AGENT = "routed_to_agent"
    # Transfer
    TRANSFER_INITIATED = "transfer_initiated"
    TRANSFER_NO_ANSWER = "transfer_no_answer"
    TRANSFER_FAILED = "transfer_failed"
    TRANSFER_SUCCESS = "transfer_success"
    TRANSFER_RECONNECTED = "transfer_reconnected"
    ROOM_CONNECTED = "room_connected"
    # Agent session
    SESSION_START = "session_start"
    RECORDING_STARTED = "recording_started"
    CONVERSATION_ITEM_ADDED = "conversation_item_added"
    USER_INPUT_TRANSCRIBED = "user_input_transcribed"
    FUNCTION_TOOLS_EXECUTED = "function_tools_executed"
    AGENT_STATE_CHANGED = "agent_state_changed"
    USER_STATE_CHANGED = "user_state_changed"
    SPEECH_CREATED = "speech_created"
    METRICS_COLLECTED = "metrics_collected"
    TOTAL_LATENCY = "total_latency"
    KNOWLEDGE_RETRIEVED = "knowledge_retrieved"
    KNOWLEDGE_RETRIEVED_WITH_SPEECH = "knowledge_retrieved_with_speech"
    # Summary
    SESSION_COMPLETE = "session_complete"
    TRANSCRIPT = "transcript"
    CALL_LATENCY_STATS = "call_latency_stats"

    @classmethod
    def parse(cls, value: Any) -> Optional["EventType"]:
        """Return the member for ``value`` or None if it is not a known type."""
        try:
            return cls(value)
        except ValueError:
            return None


LATENCY_EVENT_TYPES = (
    EventType.METRICS_COLLECTED,
    EventType.TOTAL_LATENCY,
    EventType.KNOWLEDGE_RETRIEVED_WITH_SPEECH,
)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class RoomConnectedData(_Payload):
    room_name: Optional[str] = Field(None, alias="roomName")


class TransferInitiatedData(_Payload):
    transfer_target: Optional[str] = Field(None, alias="transferTarget")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")


class SessionCompleteData(_Payload):
    duration_ms: Optional[float] = Field(None, alias="durationMs")
    usage: Optional[Dict[str, Any]] = None
    config: Optional[Dict[str, Any]] = None
    recording_url: Optional[str] = Field(None, alias="recordingUrl")
    egress_id: Optional[str] = Field(None, alias="egressId")


class TranscriptData(_Payload):
    items: List[Dict[str, Any]] = Field(default_factory=list)


class MetricsData(_Payload):
    metric_type: Optional[str] = Field(None, alias="metricType")
    end_of_utterance_delay: Optional[float] = Field(None, alias="endOfUtteranceDelay")
    ttft: Optional[float] = None
    ttfb: Optional[float] = None
    total_latency: Optional[float] = Field(None, alias="totalLatency")


PAYLOAD_MODELS: Dict[EventType, Type[_Payload]] = {
    EventType.ROOM_CONNECTED: RoomConnectedData,
    EventType.TRANSFER_INITIATED: TransferInitiatedData,
    EventType.SESSION_COMPLETE: SessionCompleteData,
    EventType.TRANSCRIPT: TranscriptData,
    EventType.METRICS_COLLECTED: MetricsData,
    EventType.TOTAL_LATENCY: MetricsData,
}

EventPayload = Union[
    RoomConnectedData, TransferInitiatedData, SessionCompleteData, TranscriptData, MetricsData, Dict[str, Any]
]


def parse_payload(event_type: EventType, data: Optional[Dict[str, Any]]) -> EventPayload:
    """Narrow ``data`` to the typed model for ``event_type`` where one exists."""
    data = data if isinstance(data, dict) else {}
    model = PAYLOAD_MODELS.get(event_type)
    if model is None:
        return data
    return model.model_validate(data)


class TelemetryEnvelope(BaseModel):
    """Event posted by the voice-agent runtime.

    Routing keys identify the call; every other field is kept verbatim as the
    stored event payload.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    timestamp: Optional[Union[str, float]] = None
    room_name: Optional[str] = Field(None, alias="roomName")
    twilio_call_sid: Optional[str] = Field(None, alias="twilioCallSid")
    caller_phone_number: Optional[str] = Field(None, alias="callerPhoneNumber")

    @property
    def stored_payload(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def data(self) -> Dict[str, Any]:
        """The event-specific body nested under ``data``."""
        inner = (self.model_extra or {}).get("data")
        return inner if isinstance(inner, dict) else {}


@dataclass
class CallEvent:
    """One event as seen by the lifecycle reconciler."""

    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    twilio_call_sid: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def payload(self) -> EventPayload:
        return parse_payload(self.event_type, self.data)


def metrics_body(stored: Dict[str, Any]) -> Dict[str, Any]:
    """Locate the metric fields inside a stored event payload.

    Telemetry envelopes nest them under ``data``; events written by this
    service keep them at the top level.
    """
    inner = stored.get("data") if isinstance(stored, dict) else None
    if isinstance(inner, dict):
        return inner
    return stored if isinstance(stored, dict) else {}
