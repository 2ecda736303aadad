"""TwiML builders for the call-control responses returned to Twilio."""

from typing import Dict, Optional
from urllib.parse import quote

from twilio.twiml.voice_response import VoiceResponse


def _attrs(**kwargs) -> dict:
    return {key: value for key, value in kwargs.items() if value is not None}


def error_response(message: str) -> str:
    """Apologise and hang up; used whenever a callback cannot be served."""
    response = VoiceResponse()
    response.say(message)
    response.hangup()
    return str(response)


def hangup_response() -> str:
    response = VoiceResponse()
    response.hangup()
    return str(response)


def build_sip_uri(user: str, endpoint: str, headers: Optional[Dict[str, str]] = None) -> str:
    """``sip:user@endpoint`` with custom ``X-`` headers as URI parameters."""
    uri = f"sip:{user}@{endpoint}"
    if headers:
        params = "&".join(
            f"{name}={quote(str(value), safe='+')}" for name, value in headers.items() if value is not None
        )
        if params:
            uri = f"{uri}?{params}"
    return uri


def transfer_to_team(number: str, timeout: int, action_url: Optional[str] = None) -> str:
    """Ring the team number; ``action_url`` receives the dial outcome for agent fallback."""
    response = VoiceResponse()
    dial = response.dial(**_attrs(action=action_url, timeout=timeout))
    dial.number(number)
    return str(response)


def connect_to_agent(
    sip_uri: str,
    refer_url: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    announcement: Optional[str] = None,
) -> str:
    """Bridge the caller to the voice-agent runtime over SIP."""
    response = VoiceResponse()
    if announcement:
        response.say(announcement)
    dial = response.dial(**_attrs(refer_url=refer_url, ring_tone="uk" if refer_url else None))
    dial.sip(sip_uri, **_attrs(username=username, password=password))
    return str(response)


def dial_transfer_target(number: str, action_url: str, timeout: int) -> str:
    """Dial the number the agent asked to transfer to, reporting the outcome to ``action_url``."""
    response = VoiceResponse()
    dial = response.dial(action=action_url, timeout=timeout, answer_on_bridge=True)
    dial.number(number)
    return str(response)


def reconnect_to_room(
    room_name: str,
    sip_endpoint: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> str:
    """Send the caller back into the agent room they were transferred out of."""
    response = VoiceResponse()
    response.say("The transfer could not be completed. Reconnecting you to the agent.")
    dial = response.dial()
    dial.sip(build_sip_uri(room_name, sip_endpoint), **_attrs(username=username, password=password))
    return str(response)


def parse_transfer_target(target: Optional[str]) -> str:
    """Reduce a REFER target such as ``<tel:+44...>`` or ``sip:+44...@host`` to a bare number."""
    if not target:
        return ""
    value = target.strip().strip("<>").strip()
    for prefix in ("tel:", "sip:", "sips:"):
        if value.lower().startswith(prefix):
            value = value[len(prefix):]
            break
    value = value.split("@", 1)[0]
    value = value.split(";", 1)[0]
    return value.strip()
