"""Associate incoming events with the call they belong to."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.calls.errors import CallNotFound
from src.database.call_store import CallStore
from src.database.models import Call
from src.utils.helpers import utcnow
from src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW = timedelta(minutes=5)


@dataclass
class ResolveCriteria:
    room_name: Optional[str] = None
    twilio_call_sid: Optional[str] = None
    agent_id: Optional[str] = None
    caller_phone_number: Optional[str] = None

    def describe(self) -> str:
        return (
            f"room={self.room_name} sid={self.twilio_call_sid} "
            f"agent={self.agent_id} caller={self.caller_phone_number}"
        )


class CallResolver:
    """Find the single call matching partial identifiers.

    Tiers are tried strictly in order and the first match wins; a tier is
    only consulted when every earlier tier was absent or found nothing:

    1. room name, minted by the agent runtime and unique per call;
    2. Twilio CallSid, reliable for the inbound leg but replaced once the
       call is re-bridged over SIP;
    3. agent + caller number among calls created within ``window``, newest
       first. Two calls from the same caller to the same agent inside the
       window are not disambiguated.
    """

    def __init__(
        self,
        store: CallStore,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.window = window
        self.clock = clock

    async def find(self, criteria: ResolveCriteria) -> Optional[Call]:
        """Return the matching call or None."""
        if criteria.room_name:
            call = await self.store.find_by_room_name(criteria.room_name)
            if call:
                logger.info("Found call by room name: %s", call.id)
                return call

        if criteria.twilio_call_sid:
            call = await self.store.find_by_call_sid(criteria.twilio_call_sid)
            if call:
                logger.info("Found call by CallSid: %s", call.id)
                return call

        if criteria.caller_phone_number and criteria.agent_id:
            since = self.clock() - self.window
            call = await self.store.find_recent_for_caller(criteria.agent_id, criteria.caller_phone_number, since)
            if call:
                logger.info("Found call by agent + caller phone: %s", call.id)
                return call

        logger.warning("Call record not found (%s)", criteria.describe())
        return None

    async def resolve(self, criteria: ResolveCriteria) -> Call:
        """Like :meth:`find` but raises ``CallNotFound`` when nothing matches."""
        call = await self.find(criteria)
        if call is None:
            raise CallNotFound(f"no call matches {criteria.describe()}")
        return call

