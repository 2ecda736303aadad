"""Tests for TwiML builders."""

import pytest

from src.telephony import twilio_handler as twiml


@pytest.mark.parametrize(
    "target, expected",
    [
        ("<tel:+447700900123>", "+447700900123"),
        ("sip:+447700900123@pstn.example.com", "+447700900123"),
        ("SIPS:+15550001111@host;transport=tls", "+15550001111"),
        ("tel:+15550001111;ext=12", "+15550001111"),
        ("+15550001111", "+15550001111"),
        ("", ""),
        (None, ""),
    ],
)
def test_parse_transfer_target(target, expected):
    assert twiml.parse_transfer_target(target) == expected


def test_build_sip_uri_encodes_headers_and_skips_missing():
    uri = twiml.build_sip_uri(
        "+15559876543",
        "sip.example.com",
        {"X-Agent-ID": "agent-1", "X-Agent-Name": "Front Desk", "X-Caller-ID": "+15551234567", "X-Call-ID": None},
    )
    assert uri == (
        "sip:+15559876543@sip.example.com"
        "?X-Agent-ID=agent-1&X-Agent-Name=Front%20Desk&X-Caller-ID=+15551234567"
    )


def test_error_response_says_then_hangs_up():
    xml = twiml.error_response("This phone number is not configured.")
    assert "<Say>This phone number is not configured.</Say><Hangup />" in xml


def test_transfer_to_team_callback_only_with_fallback():
    with_fallback = twiml.transfer_to_team("+15550001111", 20, "https://calls.example.com/api/calls/incoming/callback")
    assert 'action="https://calls.example.com/api/calls/incoming/callback"' in with_fallback
    assert 'timeout="20"' in with_fallback
    assert "<Number>+15550001111</Number>" in with_fallback

    without = twiml.transfer_to_team("+15550001111", 30)
    assert "action=" not in without


def test_connect_to_agent_with_refer():
    xml = twiml.connect_to_agent(
        "sip:+15559876543@sip.example.com",
        refer_url="https://calls.example.com/api/calls/incoming/refer",
        username="lk-user",
        password="lk-pass",
    )
    assert 'referUrl="https://calls.example.com/api/calls/incoming/refer"' in xml
    assert 'ringTone="uk"' in xml
    assert 'username="lk-user"' in xml
    assert ">sip:+15559876543@sip.example.com</Sip>" in xml


def test_dial_transfer_target_bridges_on_answer():
    xml = twiml.dial_transfer_target("+447700900123", "https://calls.example.com/api/calls/incoming/transfer-no-answer", 30)
    assert 'answerOnBridge="true"' in xml
    assert 'action="https://calls.example.com/api/calls/incoming/transfer-no-answer"' in xml
    assert "<Number>+447700900123</Number>" in xml


def test_reconnect_to_room():
    xml = twiml.reconnect_to_room("room-abc", "sip.example.com")
    assert "Reconnecting you to the agent." in xml
    assert "<Sip>sip:room-abc@sip.example.com</Sip>" in xml
