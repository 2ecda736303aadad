"""End-to-end call flows through the Twilio webhooks and the telemetry endpoint."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from config.settings import Settings
from src.api.main import create_app
from src.calls.resolver import ResolveCriteria
from src.database.models import Agent, CallStatus
from tests.conftest import AGENT_NUMBER, CALLER, TEAM_NUMBER

BUSINESS_HOURS_RULES = {
    "timeBasedRouting": {
        "enabled": True,
        "schedules": [
            {"days": ["monday"], "startTime": "09:00", "endTime": "17:00", "transferTo": TEAM_NUMBER}
        ],
    },
    "agentFallback": {"enabled": True, "timeoutSeconds": 25},
}


def _incoming(client, call_sid="CA123", to=AGENT_NUMBER):
    return client.post("/api/calls/incoming", data={"To": to, "From": CALLER, "CallSid": call_sid})


def _telemetry(client, seeded, body):
    return client.post(f"/api/agents/{seeded.agent_id}/calls", json=body)


def _event_types(services, call_id):
    return [event.event_type for event in services.recorder.list_events_sync(call_id)]


def _set_rules(session_factory, agent_id, rules):
    session = session_factory()
    session.get(Agent, agent_id).rules = rules
    session.commit()
    session.close()


def test_inbound_call_to_completion(client, services, seeded):
    response = _incoming(client)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Sip" in response.text
    assert "sip:+15559876543@sip.example.com?X-Agent-ID=" in response.text
    assert 'referUrl="https://calls.example.com/api/calls/incoming/refer"' in response.text

    call = services.store.find_by_call_sid_sync("CA123")
    assert call.status == CallStatus.INCOMING
    assert call.caller_phone_number == CALLER
    assert call.trunk_phone_number == AGENT_NUMBER

    connected = _telemetry(
        client,
        seeded,
        {"type": "room_connected", "roomName": "room-abc", "twilioCallSid": "CA123", "data": {}},
    )
    assert connected.status_code == 200
    assert connected.json() == {
        "success": True,
        "message": "Event stored successfully",
        "callId": call.id,
        "eventType": "room_connected",
    }
    call = services.store.get_call_sync(call.id)
    assert call.status == CallStatus.INCOMING
    assert call.livekit_room_name == "room-abc"

    completed = _telemetry(
        client,
        seeded,
        {
            "type": "session_complete",
            "roomName": "room-abc",
            "data": {"durationMs": 45000, "recordingUrl": "https://media.example.com/rec.ogg"},
        },
    )
    assert completed.status_code == 200
    call = services.store.get_call_sync(call.id)
    assert call.status == CallStatus.COMPLETED
    assert call.duration_seconds == 45
    assert call.recording_url == "https://media.example.com/rec.ogg"

    resolved = asyncio.run(services.resolver.resolve(ResolveCriteria(room_name="room-abc")))
    assert resolved.id == call.id
    assert _event_types(services, call.id) == [
        "call_incoming",
        "routed_to_agent",
        "room_connected",
        "session_complete",
    ]


def test_failed_transfer_reconnects_to_room(client, services, seeded):
    _incoming(client, call_sid="CA200")
    _telemetry(client, seeded, {"type": "room_connected", "roomName": "room-xfer", "twilioCallSid": "CA200"})

    refer = client.post(
        "/api/calls/incoming/refer",
        data={"ReferTransferTarget": "<sip:+447700900123@pstn.example.com>", "CallSid": "CA200"},
    )
    assert "<Number>+447700900123</Number>" in refer.text
    assert 'action="https://calls.example.com/api/calls/incoming/transfer-no-answer"' in refer.text
    call = services.store.find_by_room_name_sync("room-xfer")
    assert call.status == CallStatus.TRANSFERRED_TO_TEAM
    assert call.transfer_target == "+447700900123"

    outcome = client.post(
        "/api/calls/incoming/transfer-no-answer",
        data={"DialCallStatus": "no-answer", "CallSid": "CA200", "To": "+447700900123"},
    )
    assert outcome.status_code == 200
    assert "sip:room-xfer@sip.example.com" in outcome.text

    events = _event_types(services, call.id)
    assert "transfer_initiated" in events
    assert "transfer_no_answer" in events
    assert "transfer_reconnected" in events
    assert services.store.get_call_sync(call.id).status == CallStatus.CONNECTED_TO_AGENT


def test_busy_transfer_is_recorded_as_failure(client, services, seeded):
    _incoming(client, call_sid="CA201")
    _telemetry(client, seeded, {"type": "room_connected", "roomName": "room-busy", "twilioCallSid": "CA201"})

    outcome = client.post("/api/calls/incoming/transfer-no-answer", data={"DialCallStatus": "busy", "CallSid": "CA201"})

    call = services.store.find_by_room_name_sync("room-busy")
    assert "sip:room-busy@sip.example.com" in outcome.text
    assert "transfer_failed" in _event_types(services, call.id)


def test_answered_transfer_hangs_up(client, services, seeded):
    _incoming(client, call_sid="CA202")
    outcome = client.post(
        "/api/calls/incoming/transfer-no-answer", data={"DialCallStatus": "completed", "CallSid": "CA202"}
    )

    call = services.store.find_by_call_sid_sync("CA202")
    assert "<Hangup />" in outcome.text
    assert "<Sip" not in outcome.text
    assert "transfer_success" in _event_types(services, call.id)


def test_failed_transfer_without_room_apologises(client, services, seeded):
    _incoming(client, call_sid="CA203")
    outcome = client.post(
        "/api/calls/incoming/transfer-no-answer", data={"DialCallStatus": "no-answer", "CallSid": "CA203"}
    )
    assert "The transfer could not be completed." in outcome.text
    assert "<Hangup />" in outcome.text


def test_business_hours_rings_team_then_falls_back(client, services, seeded, session_factory):
    _set_rules(session_factory, seeded.agent_id, BUSINESS_HOURS_RULES)
    services.telephony.local_clock = lambda: datetime(2024, 1, 15, 10, 0)

    response = _incoming(client, call_sid="CA300")
    assert f"<Number>{TEAM_NUMBER}</Number>" in response.text
    assert 'action="https://calls.example.com/api/calls/incoming/callback"' in response.text
    assert 'timeout="25"' in response.text
    call = services.store.find_by_call_sid_sync("CA300")
    assert call.status == CallStatus.TRANSFERRED_TO_TEAM
    assert call.transfer_target == TEAM_NUMBER

    fallback = client.post(
        "/api/calls/incoming/callback",
        data={"To": AGENT_NUMBER, "From": CALLER, "CallSid": "CA300", "DialCallStatus": "no-answer"},
    )
    assert "Connecting you to an agent." in fallback.text
    assert "sip:+15559876543@sip.example.com" in fallback.text
    assert services.store.get_call_sync(call.id).status == CallStatus.CONNECTED_TO_AGENT
    assert _event_types(services, call.id) == ["call_incoming", "transferred_to_team", "team_no_answer_fallback"]


def test_team_answered_hangs_up(client, services, seeded):
    _incoming(client, call_sid="CA301")
    answered = client.post(
        "/api/calls/incoming/callback",
        data={"To": AGENT_NUMBER, "From": CALLER, "CallSid": "CA301", "DialCallStatus": "completed"},
    )
    assert "<Hangup />" in answered.text
    assert "<Sip" not in answered.text


def test_unknown_number_is_not_configured(client, services):
    response = _incoming(client, to="+15550000000")
    assert response.status_code == 200
    assert "This phone number is not configured." in response.text
    assert services.store.find_by_call_sid_sync("CA123") is None


def test_missing_called_number(client):
    response = client.post("/api/calls/incoming", data={"From": CALLER})
    assert "Missing required parameters." in response.text
    assert "<Hangup />" in response.text


def test_missing_sip_endpoint(session_factory, seeded):
    settings = Settings(public_base_url="https://calls.example.com", database_url="sqlite://")
    client = TestClient(create_app(settings, session_factory))

    response = _incoming(client, call_sid="CA400")
    assert "Service not configured." in response.text


def test_internal_error_still_returns_twiml(client, services, monkeypatch):
    monkeypatch.setattr(
        services.store, "lookup_agent_for_number", AsyncMock(side_effect=RuntimeError("connection reset"))
    )
    response = _incoming(client)
    assert response.status_code == 200
    assert "An error occurred. Please try again later." in response.text
    assert "<Hangup />" in response.text


def test_unparseable_refer_target(client):
    response = client.post("/api/calls/incoming/refer", data={"ReferTransferTarget": "<>", "CallSid": "CA1"})
    assert "Sorry, the transfer could not be completed." in response.text


def test_refer_without_call_record_still_dials(client, services):
    response = client.post(
        "/api/calls/incoming/refer", data={"ReferTransferTarget": "tel:+447700900123", "CallSid": "CA-unknown"}
    )
    assert "<Number>+447700900123</Number>" in response.text
