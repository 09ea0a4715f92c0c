from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from config.settings import Settings, load_settings
from discovery import discover
from realtime_sender import RealtimeConfig
from realtime_streamer import RealtimeStreamer
from services.state import AppState
from xled_client import AsyncXLEDClient


log = logging.getLogger(__name__)

_STATE_LOCK = asyncio.Lock()
_DEFAULT_STATE: AppState | None = None


def _attach_device(st: AppState, host: str) -> None:
    settings = st.settings
    assert st.http is not None
    st.xled = AsyncXLEDClient(
        host,
        client=st.http,
        timeout_s=settings.xled_http_timeout_s,
        headers=dict(settings.xled_headers),
    )
    st.streamer = RealtimeStreamer(
        xled=st.xled,
        rt_cfg=RealtimeConfig(
            host=st.xled.host,
            port=settings.rt_port,
            max_datagram_bytes=settings.rt_max_datagram_bytes,
        ),
        fps_default=settings.rt_fps_default,
        fps_max=settings.rt_fps_max,
        drop_late_frames=settings.rt_drop_late_frames,
        max_lag_s=settings.rt_max_lag_s,
    )


async def build_state(
    settings: Settings, *, http: Optional[httpx.AsyncClient] = None
) -> AppState:
    """
    Wire clients/services from settings.

    Without XLED_HOST a discovery round runs and the first device found is
    used; if none answers, the state has no device attached.
    """
    st = AppState(
        settings=settings,
        started_at=time.time(),
        http=http or httpx.AsyncClient(),
        owns_http=http is None,
    )

    try:
        host = settings.xled_host
        if not host:
            st.discovered = await discover(
                timeout_s=settings.discovery_timeout_s,
                broadcast_address=settings.discovery_broadcast,
                port=settings.discovery_port,
            )
            if st.discovered:
                host = st.discovered[0].ip
                log.info(
                    "Using discovered device %s at %s",
                    st.discovered[0].device_id,
                    host,
                )
            else:
                log.warning("XLED_HOST not set and no device answered discovery")

        if host:
            _attach_device(st, host)
    except BaseException:
        if st.owns_http and st.http is not None:
            await st.http.aclose()
        raise
    return st


async def startup(settings: Optional[Settings] = None) -> AppState:
    global _DEFAULT_STATE
    async with _STATE_LOCK:
        if _DEFAULT_STATE is None:
            _DEFAULT_STATE = await build_state(settings or load_settings())
        return _DEFAULT_STATE


def get_state() -> AppState:
    if _DEFAULT_STATE is None:
        raise RuntimeError("state not initialized; call startup() first")
    return _DEFAULT_STATE


async def close_state(st: AppState) -> None:
    if st.streamer is not None:
        await st.streamer.stop()
    if st.owns_http and st.http is not None:
        await st.http.aclose()


async def shutdown() -> None:
    global _DEFAULT_STATE
    async with _STATE_LOCK:
        st = _DEFAULT_STATE
        _DEFAULT_STATE = None
    if st is not None:
        await close_state(st)
