"""Service wiring shared by the routers."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from config.settings import Settings
from src.api.auth import GatewaySessionProvider, SessionProvider
from src.calls.latency import LatencyAggregator
from src.calls.reconciler import SessionReconciler
from src.calls.resolver import CallResolver
from src.calls.telemetry import AgentTelemetry
from src.database.call_store import CallStore
from src.database.event_recorder import EventRecorder
from src.telephony.webhooks import TelephonyConfig, TelephonyWebhooks


@dataclass
class Services:
    store: CallStore
    recorder: EventRecorder
    resolver: CallResolver
    reconciler: SessionReconciler
    aggregator: LatencyAggregator
    telephony: TelephonyWebhooks
    telemetry: AgentTelemetry
    sessions: SessionProvider


def build_services(
    settings: Settings,
    session_factory: sessionmaker,
    session_provider: Optional[SessionProvider] = None,
) -> Services:
    store = CallStore(session_factory, timeout=settings.db_timeout_seconds)
    recorder = EventRecorder(session_factory, timeout=settings.db_timeout_seconds)
    resolver = CallResolver(store, window=timedelta(minutes=settings.resolver_window_minutes))
    aggregator = LatencyAggregator(store, recorder)
    reconciler = SessionReconciler(store, recorder, aggregator)
    return Services(
        store=store,
        recorder=recorder,
        resolver=resolver,
        reconciler=reconciler,
        aggregator=aggregator,
        telephony=TelephonyWebhooks(TelephonyConfig.from_settings(settings), store, resolver, reconciler),
        telemetry=AgentTelemetry(resolver, reconciler),
        sessions=session_provider or GatewaySessionProvider(store),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
