from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from src.api.dependencies import Services, get_services
from src.calls.errors import CallNotFound, NoLatencyData, NotAuthorized, ValidationFailure
from src.calls.latency import serialize_stats
from src.database.models import AgentEvent, Call
from src.telephony import twilio_handler as twiml
from src.utils.helpers import isoformat
from src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


async def _form(request: Request) -> Dict[str, str]:
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


@router.get("/")
async def root() -> dict:
    return {"status": "ok", "message": "Call tracking service is running"}


# ── Telephony webhooks ───────────────────────────────────────────────────


@router.post("/api/calls/incoming")
async def incoming_call(request: Request, services: Services = Depends(get_services)) -> Response:
    # Twilio posts call metadata here; we respond with TwiML
    try:
        form = await _form(request)
    except Exception:
        logger.exception("Unreadable incoming call webhook body")
        return _twiml(twiml.error_response("An error occurred. Please try again later."))
    return _twiml(await services.telephony.incoming_call(form))


@router.get("/api/calls/incoming")
async def incoming_call_info(request: Request) -> dict:
    settings = request.app.state.settings
    return {
        "message": "Twilio incoming call webhook endpoint",
        "method": "POST",
        "configured": {
            "livekitSipEndpoint": bool(settings.livekit_sip_endpoint),
            "livekitSipAuth": bool(settings.livekit_sip_username and settings.livekit_sip_password),
        },
    }


@router.post("/api/calls/incoming/callback")
async def team_callback(request: Request, services: Services = Depends(get_services)) -> Response:
    try:
        form = await _form(request)
    except Exception:
        logger.exception("Unreadable team dial callback body")
        return _twiml(twiml.error_response("An error occurred. Please try again later."))
    return _twiml(await services.telephony.team_callback(form))


@router.get("/api/calls/incoming/callback")
async def team_callback_info() -> dict:
    return {"message": "Twilio team dial status callback", "method": "POST"}


@router.post("/api/calls/incoming/refer")
async def refer(request: Request, services: Services = Depends(get_services)) -> Response:
    try:
        form = await _form(request)
    except Exception:
        logger.exception("Unreadable SIP REFER callback body")
        return _twiml(twiml.error_response("Sorry, the transfer could not be completed."))
    return _twiml(await services.telephony.refer(form))


@router.get("/api/calls/incoming/refer")
async def refer_info() -> dict:
    return {"message": "Twilio SIP REFER transfer endpoint", "method": "POST"}


@router.post("/api/calls/incoming/transfer-no-answer")
async def transfer_no_answer(request: Request, services: Services = Depends(get_services)) -> Response:
    try:
        form = await _form(request)
    except Exception:
        logger.exception("Unreadable transfer dial callback body")
        return _twiml(twiml.error_response("An error occurred."))
    return _twiml(await services.telephony.transfer_no_answer(form))


@router.get("/api/calls/incoming/transfer-no-answer")
async def transfer_no_answer_info() -> dict:
    return {"message": "Twilio transfer dial status callback", "method": "POST"}


# ── Agent telemetry ──────────────────────────────────────────────────────


@router.post("/api/agents/{agent_id}/calls")
async def agent_event(agent_id: str, request: Request, services: Services = Depends(get_services)) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationFailure("request body is not valid JSON") from exc

    result = await services.telemetry.ingest(agent_id, body)
    return {
        "success": True,
        "message": "Event stored successfully",
        "callId": result.call_id,
        "eventType": result.event_type.value,
    }


# ── Tenant reads ─────────────────────────────────────────────────────────


async def _tenant_call(services: Services, slug: str, call_id: str, request: Request) -> Call:
    session = await services.sessions.get_session(slug, request)
    call = await services.store.get_call(call_id)
    if call is None:
        raise CallNotFound(f"call {call_id} not found")
    if call.organization_id != session.organization_id:
        logger.warning("User %s denied call %s outside organisation %s", session.user_id, call_id, slug)
        raise NotAuthorized("call belongs to another organisation")
    return call


def serialize_call(call: Call) -> Dict[str, Any]:
    return {
        "id": call.id,
        "organizationId": call.organization_id,
        "agentId": call.agent_id,
        "twilioCallSid": call.twilio_call_sid,
        "livekitRoomName": call.livekit_room_name,
        "callerPhoneNumber": call.caller_phone_number,
        "trunkPhoneNumber": call.trunk_phone_number,
        "status": call.status,
        "transferTarget": call.transfer_target,
        "transcript": call.transcript,
        "usageMetrics": call.usage_metrics,
        "config": call.config,
        "recordingUrl": call.recording_url,
        "egressId": call.egress_id,
        "latencyStats": call.latency_stats,
        "durationSeconds": call.duration_seconds,
        "endedAt": isoformat(call.ended_at),
        "createdAt": isoformat(call.created_at),
    }


def serialize_event(event: AgentEvent) -> Dict[str, Any]:
    return {
        "id": event.id,
        "callId": event.call_id,
        "eventType": event.event_type,
        "time": isoformat(event.time),
        "data": event.data,
    }


@router.get("/api/{slug}/calls/{call_id}")
async def get_call(slug: str, call_id: str, request: Request, services: Services = Depends(get_services)) -> dict:
    call = await _tenant_call(services, slug, call_id, request)
    return {"call": serialize_call(call)}


@router.get("/api/{slug}/calls/{call_id}/events")
async def get_call_events(
    slug: str, call_id: str, request: Request, services: Services = Depends(get_services)
) -> dict:
    call = await _tenant_call(services, slug, call_id, request)
    events = await services.recorder.list_events(call.id)
    return {"events": [serialize_event(event) for event in events]}


@router.get("/api/{slug}/calls/{call_id}/latency-stats")
async def get_latency_stats(
    slug: str, call_id: str, request: Request, services: Services = Depends(get_services)
) -> dict:
    call = await _tenant_call(services, slug, call_id, request)
    stats = await services.aggregator.compute_stats(call.id)
    if not stats:
        raise NoLatencyData(f"no latency data for call {call_id}")
    return {"stats": serialize_stats(stats)}
