from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional

from xled_protocol import (
    DISCOVERY_PORT,
    REALTIME_HEADER_LEN,
    REALTIME_MAX_DATAGRAM_BYTES,
    REALTIME_PORT,
)

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def _env(name: str) -> Optional[str]:
    """Stripped env value, or None when unset/blank."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = _env(name)
    try:
        val = int(raw) if raw is not None else default
    except ValueError:
        val = default
    return max(lo, min(hi, val))


def _env_float(name: str, default: float, *, lo: float) -> float:
    raw = _env(name)
    try:
        val = float(raw) if raw is not None else default
    except ValueError:
        val = default
    return max(lo, val)


def _env_bool(name: str, default: bool) -> bool:
    raw = (_env(name) or "").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    return default


def _env_headers(name: str) -> tuple[tuple[str, str], ...]:
    """
    Headers from a JSON object, e.g. `{"Authorization": "Bearer x"}`.

    Anything that isn't a JSON object yields no headers; null values and
    blank names are skipped.
    """
    raw = _env(name)
    if raw is None:
        return ()
    try:
        obj = json.loads(raw)
    except json.JSONDecodeError:
        return ()
    if not isinstance(obj, dict):
        return ()
    return tuple(
        (str(k).strip(), str(v))
        for k, v in obj.items()
        if v is not None and str(k).strip()
    )


@dataclass(frozen=True)
class Settings:
    # Device HTTP API
    xled_host: str  # IP or base URL; empty means "discover first"
    xled_http_timeout_s: float
    xled_headers: tuple[tuple[str, str], ...]

    # Discovery
    discovery_timeout_s: float
    discovery_broadcast: str | None  # None probes every local interface
    discovery_port: int

    # Realtime UDP
    rt_port: int
    rt_max_datagram_bytes: int
    rt_fps_default: float
    rt_fps_max: float
    rt_drop_late_frames: bool
    rt_max_lag_s: float


def load_settings() -> Settings:
    fps_default = _env_float("XLED_RT_FPS_DEFAULT", 20.0, lo=1.0)
    return Settings(
        xled_host=_env("XLED_HOST") or "",
        xled_http_timeout_s=_env_float("XLED_HTTP_TIMEOUT_S", 2.5, lo=0.1),
        xled_headers=_env_headers("XLED_HEADERS_JSON"),
        discovery_timeout_s=_env_float("XLED_DISCOVERY_TIMEOUT_S", 1.0, lo=0.05),
        discovery_broadcast=_env("XLED_DISCOVERY_BROADCAST"),
        discovery_port=_env_int("XLED_DISCOVERY_PORT", DISCOVERY_PORT, lo=1, hi=65535),
        rt_port=_env_int("XLED_RT_PORT", REALTIME_PORT, lo=1, hi=65535),
        # header plus at least one RGB node
        rt_max_datagram_bytes=_env_int(
            "XLED_RT_MAX_DATAGRAM_BYTES",
            REALTIME_MAX_DATAGRAM_BYTES,
            lo=REALTIME_HEADER_LEN + 3,
            hi=65507,
        ),
        rt_fps_default=fps_default,
        rt_fps_max=_env_float("XLED_RT_FPS_MAX", 45.0, lo=fps_default),
        rt_drop_late_frames=_env_bool("XLED_RT_DROP_LATE_FRAMES", True),
        rt_max_lag_s=_env_float("XLED_RT_MAX_LAG_S", 0.25, lo=0.0),
    )
