"""Twilio webhook handlers.

Every handler returns TwiML. These run against live phone calls, so no
failure propagates to Twilio: each path that cannot continue answers with
an apology and a hangup instead.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Mapping, Optional

from config.settings import Settings
from src.calls.events import CallEvent, EventType
from src.calls.reconciler import SessionReconciler
from src.calls.resolver import CallResolver, ResolveCriteria
from src.database.call_store import CallStore
from src.database.models import Agent, Call
from src.telephony import twilio_handler as twiml
from src.telephony.routing import determine_routing
from src.utils.logger import get_logger

logger = get_logger(__name__)

FAILED_DIAL_STATUSES = ("no-answer", "busy", "failed")


@dataclass
class TelephonyConfig:
    sip_endpoint: Optional[str]
    sip_username: Optional[str]
    sip_password: Optional[str]
    incoming_callback_url: str
    refer_url: str
    transfer_no_answer_url: str
    transfer_timeout: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelephonyConfig":
        return cls(
            sip_endpoint=settings.livekit_sip_endpoint,
            sip_username=settings.livekit_sip_username,
            sip_password=settings.livekit_sip_password,
            incoming_callback_url=settings.incoming_callback_url,
            refer_url=settings.refer_url,
            transfer_no_answer_url=settings.transfer_no_answer_url,
            transfer_timeout=settings.transfer_timeout_seconds,
        )


class TelephonyWebhooks:
    def __init__(
        self,
        config: TelephonyConfig,
        store: CallStore,
        resolver: CallResolver,
        reconciler: SessionReconciler,
        local_clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.store = store
        self.resolver = resolver
        self.reconciler = reconciler
        self.local_clock = local_clock

    # ── Inbound call ─────────────────────────────────────────────────────

    async def incoming_call(self, form: Mapping[str, str]) -> str:
        """Create the call record and route to the team or the agent."""
        try:
            return await self._incoming_call(form)
        except Exception:
            logger.exception("Error in incoming call webhook")
            return twiml.error_response("An error occurred. Please try again later.")

    async def _incoming_call(self, form: Mapping[str, str]) -> str:
        to, caller, call_sid = form.get("To"), form.get("From"), form.get("CallSid")
        logger.info("Incoming call: to=%s from=%s sid=%s", to, caller, call_sid)
        if not to:
            logger.error("Incoming webhook missing To parameter")
            return twiml.error_response("Missing required parameters.")

        agent = await self.store.lookup_agent_for_number(to)
        if agent is None:
            logger.error("No agent assigned to %s", to)
            return twiml.error_response("This phone number is not configured.")

        # The call record exists regardless of how the call is routed
        call = await self.store.create_call(agent.organization_id, agent.id, caller, to, call_sid)
        await self.reconciler.handle(
            call,
            CallEvent(EventType.CALL_INCOMING, {"caller": caller, "trunk": to, "callSid": call_sid}),
        )

        decision = determine_routing(agent.rules, self.local_clock())
        if decision.should_transfer and decision.transfer_number:
            await self.reconciler.handle(
                call,
                CallEvent(
                    EventType.TRANSFERRED_TO_TEAM,
                    {
                        "transferNumber": decision.transfer_number,
                        "timeout": decision.timeout,
                        "fallbackEnabled": decision.enable_fallback,
                    },
                ),
            )
            action = self.config.incoming_callback_url if decision.enable_fallback else None
            return twiml.transfer_to_team(decision.transfer_number, decision.timeout, action)

        if not self.config.sip_endpoint:
            logger.error("LiveKit SIP endpoint not configured")
            return twiml.error_response("Service not configured.")

        await self.reconciler.handle(call, CallEvent(EventType.ROUTED_TO_AGENT, {"direct": True}))
        return twiml.connect_to_agent(
            self._agent_sip_uri(agent, to, caller, call_sid, call),
            refer_url=self.config.refer_url,
            username=self.config.sip_username,
            password=self.config.sip_password,
        )

    # ── Team dial outcome ────────────────────────────────────────────────

    async def team_callback(self, form: Mapping[str, str]) -> str:
        """Fall back to the agent when the team did not pick up."""
        try:
            return await self._team_callback(form)
        except Exception:
            logger.exception("Error in team dial callback")
            return twiml.error_response("An error occurred. Please try again later.")

    async def _team_callback(self, form: Mapping[str, str]) -> str:
        to, caller = form.get("To"), form.get("From")
        call_sid, dial_status = form.get("CallSid"), form.get("DialCallStatus")
        logger.info("Team dial finished: sid=%s status=%s", call_sid, dial_status)
        if not to:
            return twiml.error_response("An error occurred.")

        if dial_status not in FAILED_DIAL_STATUSES:
            logger.info("Team answered (status=%s), ending call", dial_status)
            return twiml.hangup_response()

        agent = await self.store.lookup_agent_for_number(to)
        if agent is None:
            logger.error("No agent found for %s", to)
            return twiml.error_response("Unable to connect to an agent.")

        call = await self.resolver.find(
            ResolveCriteria(twilio_call_sid=call_sid, agent_id=agent.id, caller_phone_number=caller)
        )
        if call is None:
            logger.warning("Call record not found for team fallback, connecting caller anyway")
        else:
            await self.reconciler.handle(
                call,
                CallEvent(
                    EventType.TEAM_NO_ANSWER_FALLBACK,
                    {"dialCallStatus": dial_status, "fallbackReason": "Team did not answer, routing to agent"},
                ),
            )

        if not self.config.sip_endpoint:
            logger.error("LiveKit SIP endpoint not configured")
            return twiml.error_response("Service not configured.")

        return twiml.connect_to_agent(
            self._agent_sip_uri(agent, to, caller, call_sid, call),
            username=self.config.sip_username,
            password=self.config.sip_password,
            announcement="Connecting you to an agent.",
        )

    # ── Agent-initiated transfer (SIP REFER) ─────────────────────────────

    async def refer(self, form: Mapping[str, str]) -> str:
        """Dial the number the agent transferred the caller to."""
        try:
            return await self._refer(form)
        except Exception:
            logger.exception("Error in refer handler")
            return twiml.error_response("Sorry, the transfer could not be completed.")

    async def _refer(self, form: Mapping[str, str]) -> str:
        target, call_sid = form.get("ReferTransferTarget"), form.get("CallSid")
        number = twiml.parse_transfer_target(target)
        logger.info("SIP REFER: target=%s parsed=%s sid=%s", target, number, call_sid)
        if not number:
            return twiml.error_response("Sorry, the transfer could not be completed.")

        call = await self.resolver.find(ResolveCriteria(twilio_call_sid=call_sid))
        if call is None:
            logger.warning("Could not find call record, proceeding with transfer")
        else:
            await self.reconciler.handle(
                call,
                CallEvent(EventType.TRANSFER_INITIATED, {"transferTarget": target, "phoneNumber": number}),
            )
        return twiml.dial_transfer_target(number, self.config.transfer_no_answer_url, self.config.transfer_timeout)

    # ── Transfer dial outcome ────────────────────────────────────────────

    async def transfer_no_answer(self, form: Mapping[str, str]) -> str:
        """Reconnect to the agent room on a failed transfer, hang up otherwise."""
        try:
            return await self._transfer_no_answer(form)
        except Exception:
            logger.exception("Error in transfer callback")
            return twiml.error_response("An error occurred.")

    async def _transfer_no_answer(self, form: Mapping[str, str]) -> str:
        dial_status, call_sid, to = form.get("DialCallStatus"), form.get("CallSid"), form.get("To")
        logger.info("Transfer dial finished: sid=%s status=%s", call_sid, dial_status)
        call = await self.resolver.find(ResolveCriteria(twilio_call_sid=call_sid))

        if dial_status not in FAILED_DIAL_STATUSES:
            if call is not None:
                await self.reconciler.handle(
                    call,
                    CallEvent(EventType.TRANSFER_SUCCESS, {"dialCallStatus": dial_status, "transferTarget": to}),
                )
            return twiml.hangup_response()

        logger.info("Transfer failed (%s), reconnecting to AI agent", dial_status)
        if call is None:
            logger.warning("No call record for failed transfer, cannot reconnect")
            return twiml.error_response("The transfer could not be completed.")

        if dial_status == "no-answer":
            failure = CallEvent(EventType.TRANSFER_NO_ANSWER, {"dialCallStatus": dial_status, "transferTarget": to})
        else:
            failure = CallEvent(EventType.TRANSFER_FAILED, {"dialCallStatus": dial_status, "reason": dial_status})
        await self.reconciler.handle(call, failure)

        room_name = call.livekit_room_name
        if not room_name or not self.config.sip_endpoint:
            logger.error("Cannot reconnect call %s: room=%s endpoint=%s", call.id, room_name, self.config.sip_endpoint)
            return twiml.error_response("The transfer could not be completed.")

        await self.reconciler.handle(
            call,
            CallEvent(EventType.TRANSFER_RECONNECTED, {"reason": dial_status, "livekitRoomName": room_name}),
        )
        return twiml.reconnect_to_room(
            room_name, self.config.sip_endpoint, self.config.sip_username, self.config.sip_password
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _agent_sip_uri(
        self,
        agent: Agent,
        to: str,
        caller: Optional[str],
        call_sid: Optional[str],
        call: Optional[Call],
    ) -> str:
        headers: Dict[str, Optional[str]] = {
            "X-Agent-ID": agent.id,
            "X-Agent-Name": agent.name,
            "X-Phone-Number": to,
            "X-Caller-ID": caller,
            "X-Call-SID": call_sid,
            "X-Call-ID": call.id if call is not None else None,
        }
        return twiml.build_sip_uri(to, self.config.sip_endpoint, headers)
