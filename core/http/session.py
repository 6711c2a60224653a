"""HTTP session management for aiohttp.

Provides one shared ClientSession per process and event loop. Inherited
sessions are dropped after a fork.
"""

from __future__ import annotations

import asyncio
import logging
import os

import aiohttp

from config import get_nominatim_user_agent
from core.constants import (
    HTTP_CONNECTION_LIMIT,
    HTTP_TIMEOUT_CONNECT,
    HTTP_TIMEOUT_SOCK_READ,
    HTTP_TIMEOUT_TOTAL,
)

logger = logging.getLogger(__name__)


class SessionState:
    """State container for aiohttp session to avoid global variables."""

    session: aiohttp.ClientSession | None = None
    session_owner_pid: int | None = None


async def _discard_stale_session() -> None:
    session = SessionState.session
    if session is None:
        return

    if os.getpid() != SessionState.session_owner_pid:
        logger.debug(
            "Discarding inherited session from parent process %s",
            SessionState.session_owner_pid,
        )
        SessionState.session = None
        SessionState.session_owner_pid = None
        return

    current_loop = asyncio.get_running_loop()
    if session.loop is current_loop and not session.loop.is_closed():
        return

    logger.info("Detected event loop change. Creating new session.")
    try:
        if not session.closed and not session.loop.is_closed():
            await session.close()
    except Exception as e:
        logger.warning("Error closing stale session: %s", e)
    SessionState.session = None


async def get_session() -> aiohttp.ClientSession:
    """Get or create the shared aiohttp ClientSession for this process."""
    await _discard_stale_session()

    if SessionState.session is None or SessionState.session.closed:
        timeout = aiohttp.ClientTimeout(
            total=HTTP_TIMEOUT_TOTAL,
            connect=HTTP_TIMEOUT_CONNECT,
            sock_read=HTTP_TIMEOUT_SOCK_READ,
        )
        connector = aiohttp.TCPConnector(
            limit=HTTP_CONNECTION_LIMIT,
            enable_cleanup_closed=True,
        )
        SessionState.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={
                "User-Agent": get_nominatim_user_agent(),
                "Accept": "application/json",
            },
            connector=connector,
        )
        SessionState.session_owner_pid = os.getpid()
        logger.debug("Created new aiohttp session for process %s", os.getpid())

    return SessionState.session


async def cleanup_session() -> None:
    """Close the shared session for the current process."""
    if SessionState.session and not SessionState.session.closed:
        try:
            await SessionState.session.close()
            logger.info("Closed aiohttp session for process %s", os.getpid())
        except Exception as e:
            logger.warning("Error closing session: %s", e)

    SessionState.session = None
    SessionState.session_owner_pid = None
