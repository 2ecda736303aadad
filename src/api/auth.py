"""Tenant session lookup for the read endpoints."""

from dataclasses import dataclass
from typing import Protocol

from fastapi import Request

from src.calls.errors import NotAuthenticated
from src.database.call_store import CallStore
from src.utils.logger import get_logger

logger = get_logger(__name__)

USER_HEADER = "X-User-Id"


@dataclass
class AuthSession:
    user_id: str
    organization_id: str


class SessionProvider(Protocol):
    async def get_session(self, slug: str, request: Request) -> AuthSession:
        ...


class GatewaySessionProvider:
    """Trusts the user id forwarded by the authenticating gateway in front of the service."""

    def __init__(self, store: CallStore):
        self.store = store

    async def get_session(self, slug: str, request: Request) -> AuthSession:
        user_id = request.headers.get(USER_HEADER)
        if not user_id:
            raise NotAuthenticated("missing user session")

        organization = await self.store.get_organization_by_slug(slug)
        if organization is None:
            logger.warning("Session rejected: unknown organisation %s", slug)
            raise NotAuthenticated("unknown organisation")
        return AuthSession(user_id=user_id, organization_id=organization.id)
