"""Helper utilities for time handling and bounded blocking calls."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into naive UTC.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Unix epoch in milliseconds from the agent runtime
        parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Render a naive UTC datetime as ISO-8601 with a Z suffix."""
    if value is None:
        return None
    return value.replace(tzinfo=None).isoformat() + "Z"


async def run_blocking(func: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
    """Run a blocking function on a worker thread, bounded by ``timeout`` seconds."""
    if timeout is None:
        return await asyncio.to_thread(func, *args)
    return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
