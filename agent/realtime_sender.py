from __future__ import annotations

import asyncio
import logging
import socket
import threading
from dataclasses import dataclass

from xled_errors import RealtimeSendFailed
from xled_protocol import (
    REALTIME_MAX_DATAGRAM_BYTES,
    REALTIME_PORT,
    Frame,
    iter_datagrams,
    nodes_capacity,
)


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeConfig:
    host: str
    port: int = REALTIME_PORT
    # 12 byte header + 296 RGB nodes = 900 bytes
    max_datagram_bytes: int = REALTIME_MAX_DATAGRAM_BYTES

    @property
    def nodes_per_datagram(self) -> int:
        return nodes_capacity(self.max_datagram_bytes)


class RealtimeSender:
    """
    Blocking realtime frame sender.

    Datagram format (see xled_protocol):
      byte0: version 0x03
      bytes1-8: raw session token (base64-decoded)
      bytes9-10: 0x00 0x00
      byte11: fragment number, 0 for the first datagram of every frame
      payload: r,g,b per node, up to `nodes_per_datagram` nodes
    """

    def __init__(self, cfg: RealtimeConfig) -> None:
        if not cfg.host:
            raise ValueError("realtime host is required")
        # Fail early on a config that can't carry any pixels.
        _ = cfg.nodes_per_datagram
        self.cfg = cfg
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._lock = threading.Lock()

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "RealtimeSender":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def send_frame(self, token: str | bytes, frame: Frame) -> int:
        """Send one frame; returns the number of datagrams sent."""
        datagrams = list(
            iter_datagrams(token, frame, max_datagram_bytes=self.cfg.max_datagram_bytes)
        )
        addr = (self.cfg.host, int(self.cfg.port))
        # One frame at a time so fragments of two frames never interleave.
        with self._lock:
            for i, dgram in enumerate(datagrams):
                try:
                    self._sock.sendto(dgram, addr)
                except OSError as e:
                    raise RealtimeSendFailed(i, self.cfg.host, str(e)) from e
        return len(datagrams)


class AsyncRealtimeSender:
    """asyncio variant of RealtimeSender; cancelling send_frame stops after the current datagram."""

    def __init__(self, cfg: RealtimeConfig) -> None:
        if not cfg.host:
            raise ValueError("realtime host is required")
        _ = cfg.nodes_per_datagram
        self.cfg = cfg
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setblocking(False)
        self._lock = asyncio.Lock()

    def close(self) -> None:
        self._sock.close()

    async def __aenter__(self) -> "AsyncRealtimeSender":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()

    async def send_frame(self, token: str | bytes, frame: Frame) -> int:
        datagrams = list(
            iter_datagrams(token, frame, max_datagram_bytes=self.cfg.max_datagram_bytes)
        )
        loop = asyncio.get_running_loop()
        addr = (self.cfg.host, int(self.cfg.port))
        async with self._lock:
            for i, dgram in enumerate(datagrams):
                try:
                    await loop.sock_sendto(self._sock, dgram, addr)
                except OSError as e:
                    raise RealtimeSendFailed(i, self.cfg.host, str(e)) from e
        log.debug("Sent %d realtime datagram(s) to %s", len(datagrams), self.cfg.host)
        return len(datagrams)


async def send_frame(
    host: str,
    token: str | bytes,
    frame: Frame,
    *,
    port: int = REALTIME_PORT,
    max_datagram_bytes: int = REALTIME_MAX_DATAGRAM_BYTES,
) -> int:
    """One-shot helper: open a socket, send a single frame, close it."""
    cfg = RealtimeConfig(host=host, port=port, max_datagram_bytes=max_datagram_bytes)
    async with AsyncRealtimeSender(cfg) as sender:
        return await sender.send_frame(token, frame)
