"""
core/connection_manager.py — Process-wide session holder for the CLI.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .session import Session

if TYPE_CHECKING:
    from obs_link.config.settings import OBSSettings

_session: Optional[Session] = None


async def open_session(settings: "OBSSettings") -> Session:
    global _session
    _session = await Session.connect(
        host=settings.host,
        port=settings.port,
        password=settings.password or None,
        tls=settings.tls,
        event_subscriptions=settings.subscription_mask(),
        rpc_version=settings.rpc_version,
        handshake_timeout=settings.handshake_timeout,
        connect_timeout=settings.connect_timeout,
        broadcast_capacity=settings.broadcast_capacity,
        verify_versions=settings.verify_versions,
    )
    return _session


def get_session() -> Session:
    if _session is None or not _session.is_active():
        raise RuntimeError("OBS session not open. Call open_session() first.")
    return _session


async def close_session() -> None:
    global _session
    if _session is not None:
        await _session.disconnect()
    _session = None
