"""Per-call latency statistics derived from metrics events."""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.calls.events import LATENCY_EVENT_TYPES, EventType, MetricsData, metrics_body
from src.database.call_store import CallStore
from src.database.event_recorder import EventRecorder
from src.database.models import AgentEvent
from src.utils.logger import get_logger

logger = get_logger(__name__)

CATEGORIES = ("eou", "llm", "tts", "rag", "total")


@dataclass
class LatencyStats:
    min: float
    p50: float
    p95: float
    p99: float
    avg: float
    max: float
    count: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile (no interpolation)."""
    if not values:
        raise ValueError("percentile of an empty sequence")
    ordered = sorted(values)
    index = math.ceil(pct * len(ordered) / 100) - 1
    index = min(max(index, 0), len(ordered) - 1)
    return ordered[index]


def summarize(values: Sequence[float]) -> Optional[LatencyStats]:
    if not values:
        return None
    return LatencyStats(
        min=min(values),
        p50=percentile(values, 50),
        p95=percentile(values, 95),
        p99=percentile(values, 99),
        avg=sum(values) / len(values),
        max=max(values),
        count=len(values),
    )


def _sample(event_type: str, metrics: MetricsData) -> Optional[tuple]:
    """Return ``(category, value)`` for one metrics event, or None."""
    if event_type == EventType.TOTAL_LATENCY.value or metrics.metric_type == "total_latency":
        if metrics.total_latency is not None:
            return "total", metrics.total_latency
        return None
    if event_type != EventType.METRICS_COLLECTED.value:
        return None
    if metrics.metric_type == "eou" and metrics.end_of_utterance_delay is not None:
        return "eou", metrics.end_of_utterance_delay
    if metrics.metric_type == "llm" and metrics.ttft is not None:
        return "llm", metrics.ttft
    if metrics.metric_type == "tts" and metrics.ttfb is not None:
        return "tts", metrics.ttfb
    return None


def _retrieval_seconds(stored: Dict[str, Any]) -> Optional[float]:
    """Retrieval latency sits at the top level of the payload, in milliseconds."""
    value = stored.get("latency_ms") if isinstance(stored, dict) else None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value / 1000


def collect_samples(events: Iterable[AgentEvent]) -> Dict[str, List[float]]:
    samples: Dict[str, List[float]] = {category: [] for category in CATEGORIES}
    for event in events:
        if event.event_type == EventType.KNOWLEDGE_RETRIEVED_WITH_SPEECH.value:
            seconds = _retrieval_seconds(event.data or {})
            if seconds is not None:
                samples["rag"].append(seconds)
            continue
        try:
            metrics = MetricsData.model_validate(metrics_body(event.data or {}))
        except ValueError:
            # Non-numeric metric fields from an older runtime; nothing to sample
            logger.debug("Skipping malformed metrics event %s", event.id)
            continue
        found = _sample(event.event_type, metrics)
        if found:
            category, value = found
            samples[category].append(float(value))
    return samples


def compute_stats_from_events(events: Iterable[AgentEvent]) -> Optional[Dict[str, LatencyStats]]:
    """Stats per category; empty categories are omitted, None when nothing qualifies."""
    samples = collect_samples(events)
    stats = {category: summarize(values) for category, values in samples.items() if values}
    return stats or None


class LatencyAggregator:
    def __init__(self, store: CallStore, recorder: EventRecorder):
        self.store = store
        self.recorder = recorder

    async def compute_stats(self, call_id: str) -> Optional[Dict[str, LatencyStats]]:
        events = await self.recorder.list_events(call_id, LATENCY_EVENT_TYPES)
        stats = compute_stats_from_events(events)
        logger.info(
            "Latency stats for call %s: %s",
            call_id,
            {category: s.count for category, s in (stats or {}).items()},
        )
        return stats

    async def compute_and_store(self, call_id: str) -> Optional[Dict[str, LatencyStats]]:
        """Compute stats, cache them on the call and append a summary event."""
        stats = await self.compute_stats(call_id)
        if not stats:
            return None
        serialized = serialize_stats(stats)
        await self.store.update_call(call_id, {"latency_stats": serialized})
        await self.recorder.record(call_id, EventType.CALL_LATENCY_STATS, serialized)
        logger.info("Latency statistics saved for call %s", call_id)
        return stats


def serialize_stats(stats: Dict[str, LatencyStats]) -> Dict[str, Dict[str, float]]:
    return {category: value.to_dict() for category, value in stats.items()}
