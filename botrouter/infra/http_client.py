# botrouter/infra/http_client.py
"""
Process-wide aiohttp sessions, one per outbound profile.

Sessions open lazily and are reused across requests; the lifespan hook
calls ``close_all_sessions()`` on shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass

import aiohttp

from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionProfile:
    name: str
    total_seconds: float
    connect_seconds: float = 5.0
    pool_limit: int = 10


_open: dict[str, aiohttp.ClientSession] = {}


def session_for(profile: SessionProfile) -> aiohttp.ClientSession:
    """Reuse the profile's session, reopening it if it was closed."""
    session = _open.get(profile.name)
    if session is not None and not session.closed:
        return session

    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=profile.total_seconds, connect=profile.connect_seconds),
        connector=aiohttp.TCPConnector(limit=profile.pool_limit, keepalive_timeout=30),
    )
    _open[profile.name] = session
    logger.debug(f"Opened HTTP session {profile.name} (pool={profile.pool_limit})")
    return session


def get_gateway_session(total_timeout: float = 15.0) -> aiohttp.ClientSession:
    """Session for replies sent through the messaging gateway."""
    return session_for(SessionProfile("gateway", total_seconds=total_timeout, pool_limit=20))


async def close_all_sessions() -> None:
    while _open:
        name, session = _open.popitem()
        if not session.closed:
            await session.close()
        logger.debug(f"Closed HTTP session {name}")
