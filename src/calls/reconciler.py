"""Call lifecycle state machine.

``apply`` is a pure transition function: given the current call record and
one event it returns the column updates the event implies (possibly none).
``SessionReconciler`` is the single entry point the webhooks use: it appends
the raw event first, then persists whatever ``apply`` derived.

Status flow::

    incoming -> transferred_to_team -> connected_to_agent -> completed
    incoming -> completed

``failed`` is never produced here; it belongs to the webhook layer. Routing
events leave a terminal call alone, but the end-of-session events complete
any call that is not yet ``completed``.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.calls.errors import StorageFailure
from src.calls.events import (
    CallEvent,
    EventType,
    RoomConnectedData,
    SessionCompleteData,
    TransferInitiatedData,
)
from src.calls.latency import LatencyAggregator
from src.database.call_store import CallStore
from src.database.event_recorder import EventRecorder
from src.database.models import AgentEvent, Call, CallStatus
from src.utils.helpers import utcnow
from src.utils.logger import get_logger

logger = get_logger(__name__)

Updates = Dict[str, Any]


def _is_terminal(call: Call) -> bool:
    return call.status in CallStatus.TERMINAL


def _elapsed_seconds(call: Call, now: datetime) -> Optional[int]:
    if call.created_at is None:
        return None
    return max(int((now - call.created_at).total_seconds()), 0)


def _completion(call: Call, now: datetime, duration_ms: Optional[float] = None) -> Updates:
    updates: Updates = {"status": CallStatus.COMPLETED, "ended_at": now}
    if duration_ms is not None:
        updates["duration_seconds"] = int(duration_ms // 1000)
    else:
        elapsed = _elapsed_seconds(call, now)
        if elapsed is not None:
            updates["duration_seconds"] = elapsed
    return updates


def _item_key(item: Any) -> str:
    if isinstance(item, dict) and item.get("id"):
        return f"id:{item['id']}"
    return json.dumps(item, sort_keys=True, default=str)


def merge_transcript(existing: Optional[List[Any]], incoming: List[Any]) -> List[Any]:
    """Union of transcript items, keeping first-seen order."""
    merged = list(existing or [])
    seen = {_item_key(item) for item in merged}
    for item in incoming:
        key = _item_key(item)
        if key not in seen:
            seen.add(key)
            merged.append(item)
    return merged


def _on_room_connected(call: Call, event: CallEvent, now: datetime) -> Updates:
    if _is_terminal(call):
        return {}
    payload: RoomConnectedData = event.payload
    updates: Updates = {}
    if payload.room_name and payload.room_name != call.livekit_room_name:
        updates["livekit_room_name"] = payload.room_name
    # The SIP leg can carry a new CallSid; this is the only place it is re-keyed
    if event.twilio_call_sid and event.twilio_call_sid != call.twilio_call_sid:
        updates["twilio_call_sid"] = event.twilio_call_sid
    return updates


def _on_transferred_to_team(call: Call, event: CallEvent, now: datetime) -> Updates:
    if _is_terminal(call):
        return {}
    updates: Updates = {"status": CallStatus.TRANSFERRED_TO_TEAM}
    if event.data.get("transferNumber"):
        updates["transfer_target"] = event.data["transferNumber"]
    return updates


def _on_transfer_initiated(call: Call, event: CallEvent, now: datetime) -> Updates:
    if _is_terminal(call):
        return {}
    payload: TransferInitiatedData = event.payload
    updates: Updates = {"status": CallStatus.TRANSFERRED_TO_TEAM}
    target = payload.phone_number or payload.transfer_target
    if target:
        updates["transfer_target"] = target
    return updates


def _on_reconnected(call: Call, event: CallEvent, now: datetime) -> Updates:
    if _is_terminal(call):
        return {}
    return {"status": CallStatus.CONNECTED_TO_AGENT}


def _on_session_complete(call: Call, event: CallEvent, now: datetime) -> Updates:
    payload: SessionCompleteData = event.payload
    updates: Updates = {}
    if call.status != CallStatus.COMPLETED:
        updates.update(_completion(call, now, payload.duration_ms))
    elif payload.duration_ms is not None:
        # Completed earlier by the transcript fallback; the runtime's figure is authoritative
        updates["duration_seconds"] = int(payload.duration_ms // 1000)

    if payload.usage is not None:
        updates["usage_metrics"] = payload.usage
    if payload.config is not None:
        updates["config"] = payload.config
    if payload.recording_url:
        updates["recording_url"] = payload.recording_url
    if payload.egress_id:
        updates["egress_id"] = payload.egress_id
    return updates


def _on_transcript(call: Call, event: CallEvent, now: datetime) -> Updates:
    items = event.data.get("items")
    if not isinstance(items, list):
        return {}
    updates: Updates = {}
    merged = merge_transcript(call.transcript, items)
    if merged != (call.transcript or []) or call.transcript is None:
        updates["transcript"] = merged
    # Fallback completion signal when session_complete is lost or late
    if call.status != CallStatus.COMPLETED:
        updates.update(_completion(call, now))
    return updates


TRANSITIONS: Dict[EventType, Callable[[Call, CallEvent, datetime], Updates]] = {
    EventType.ROOM_CONNECTED: _on_room_connected,
    EventType.TRANSFERRED_TO_TEAM: _on_transferred_to_team,
    EventType.TRANSFER_INITIATED: _on_transfer_initiated,
    EventType.TEAM_NO_ANSWER_FALLBACK: _on_reconnected,
    EventType.TRANSFER_RECONNECTED: _on_reconnected,
    EventType.SESSION_COMPLETE: _on_session_complete,
    EventType.TRANSCRIPT: _on_transcript,
}


def apply(call: Call, event: CallEvent, now: Optional[datetime] = None) -> Updates:
    """Return the column updates ``event`` implies for ``call``."""
    transition = TRANSITIONS.get(event.event_type)
    if transition is None:
        return {}
    return transition(call, event, now or utcnow())


class SessionReconciler:
    """Record an event and fold it into the call record."""

    def __init__(
        self,
        store: CallStore,
        recorder: EventRecorder,
        aggregator: LatencyAggregator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.recorder = recorder
        self.aggregator = aggregator
        self.clock = clock

    async def handle(self, call: Call, event: CallEvent, stored_payload: Optional[Dict[str, Any]] = None) -> AgentEvent:
        """Append ``event`` for ``call`` and apply its transition.

        Raises ``StorageFailure`` only when the event itself could not be
        stored. A failed call update after that is logged; the event log
        stays the source of truth and the update can be replayed.
        """
        payload = stored_payload if stored_payload is not None else event.data
        recorded = await self.recorder.record(call.id, event.event_type, payload, event.timestamp)

        try:
            updates = apply(call, event, self.clock())
        except ValueError:
            # Stored as received; a payload of the wrong shape only skips the transition
            logger.exception("Malformed %s payload for call %s", event.event_type.value, call.id)
            updates = {}
        if updates:
            try:
                await self.store.update_call(call.id, updates)
            except StorageFailure:
                logger.exception("Failed to apply %s to call %s", event.event_type.value, call.id)
            else:
                for column, value in updates.items():
                    setattr(call, column, value)
                logger.info("Call %s updated by %s: %s", call.id, event.event_type.value, sorted(updates))

        if event.event_type == EventType.SESSION_COMPLETE:
            try:
                await self.aggregator.compute_and_store(call.id)
            except StorageFailure:
                logger.exception("Error calculating latency statistics for call %s", call.id)

        return recorded
