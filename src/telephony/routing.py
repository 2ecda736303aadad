"""Inbound routing rules: transfer to the team during business hours, otherwise the agent."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.utils.logger import get_logger

logger = get_logger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_TIMEOUT = 30


@dataclass
class Schedule:
    days: List[str]
    start_time: str
    end_time: str
    transfer_to: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Schedule":
        return cls(
            days=[str(day).lower() for day in raw.get("days") or []],
            start_time=str(raw.get("startTime") or "00:00"),
            end_time=str(raw.get("endTime") or "00:00"),
            transfer_to=str(raw.get("transferTo") or ""),
        )

    def contains(self, now: datetime) -> bool:
        if DAY_NAMES[now.weekday()] not in self.days:
            return False
        current = now.hour * 60 + now.minute
        return _minutes(self.start_time) <= current < _minutes(self.end_time)


@dataclass
class AgentRules:
    time_routing_enabled: bool = False
    schedules: List[Schedule] = field(default_factory=list)
    fallback_enabled: bool = False
    fallback_timeout: int = DEFAULT_TIMEOUT

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "AgentRules":
        if not isinstance(raw, dict):
            return cls()
        routing = raw.get("timeBasedRouting") or {}
        fallback = raw.get("agentFallback") or {}
        return cls(
            time_routing_enabled=bool(routing.get("enabled")),
            schedules=[Schedule.from_dict(item) for item in routing.get("schedules") or [] if isinstance(item, dict)],
            fallback_enabled=bool(fallback.get("enabled")),
            fallback_timeout=int(fallback.get("timeoutSeconds") or DEFAULT_TIMEOUT),
        )


@dataclass
class RoutingDecision:
    should_transfer: bool = False
    transfer_number: Optional[str] = None
    timeout: int = DEFAULT_TIMEOUT
    enable_fallback: bool = False


def _minutes(hhmm: str) -> int:
    hours, _, minutes = hhmm.partition(":")
    return int(hours) * 60 + int(minutes or 0)


def determine_routing(raw_rules: Optional[Dict[str, Any]], now: datetime) -> RoutingDecision:
    """Decide whether an inbound call rings the team or goes straight to the agent."""
    decision = RoutingDecision()
    try:
        rules = AgentRules.from_dict(raw_rules)
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring malformed agent rules: %s", exc)
        return decision

    if not rules.time_routing_enabled or not rules.schedules:
        logger.info("Time-based routing disabled, routing directly to agent")
        return decision

    for schedule in rules.schedules:
        try:
            inside = schedule.contains(now)
        except ValueError:
            logger.warning("Skipping schedule with malformed times: %s-%s", schedule.start_time, schedule.end_time)
            continue
        if inside and schedule.transfer_to:
            decision.should_transfer = True
            decision.transfer_number = schedule.transfer_to
            logger.info("Within schedule %s %s-%s, transferring to %s",
                        ",".join(schedule.days), schedule.start_time, schedule.end_time, schedule.transfer_to)
            break

    if not decision.should_transfer:
        logger.info("Outside business hours, routing to agent")
        return decision

    if rules.fallback_enabled:
        decision.enable_fallback = True
        decision.timeout = rules.fallback_timeout
    return decision
