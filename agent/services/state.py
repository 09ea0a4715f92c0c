from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from config.settings import Settings
from discovery import Device
from realtime_streamer import RealtimeStreamer
from xled_client import AsyncXLEDClient


@dataclass
class AppState:
    settings: Settings
    started_at: float

    # Shared async HTTP client for the device API.
    http: Optional[httpx.AsyncClient] = None

    # Device clients/services (None when no device was configured or found).
    xled: Optional[AsyncXLEDClient] = None
    streamer: Optional[RealtimeStreamer] = None

    # Devices seen by the startup discovery round (if one ran).
    discovered: list[Device] = field(default_factory=list)

    # Whether `http` was created here (and must be closed on shutdown).
    owns_http: bool = False

    def uptime_s(self) -> float:
        return max(0.0, time.time() - float(self.started_at))
