from __future__ import annotations

import base64
import secrets
import struct
from dataclasses import dataclass
from typing import Iterator, NamedTuple, Sequence, Union


DISCOVERY_PORT = 5555
DISCOVERY_VERSION = 0x01
DISCOVERY_PROBE = bytes([DISCOVERY_VERSION]) + b"discover"

REALTIME_PORT = 7777
REALTIME_VERSION = 0x03
REALTIME_HEADER_LEN = 12
REALTIME_MAX_DATAGRAM_BYTES = 900
TOKEN_LEN = 8

CHALLENGE_LEN = 32


class LightNode(NamedTuple):
    r: int
    g: int
    b: int


# A frame is either a sequence of (r, g, b) nodes or already-packed RGB bytes.
Frame = Union[Sequence[LightNode], Sequence[Sequence[int]], bytes, bytearray, memoryview]


@dataclass(frozen=True)
class DiscoveryResponse:
    ip: str
    device_id: str


def make_challenge() -> str:
    """Base64 of 32 random bytes, sent as the /login challenge."""
    return base64.b64encode(secrets.token_bytes(CHALLENGE_LEN)).decode("ascii")


def decode_token(token: str | bytes) -> bytes:
    """Return the raw 8 token bytes from a base64 token (or pass raw bytes through)."""
    if isinstance(token, (bytes, bytearray)):
        raw = bytes(token)
    else:
        try:
            raw = base64.b64decode(str(token).strip(), validate=True)
        except Exception as e:
            raise ValueError(f"token is not valid base64: {e}") from e
    if len(raw) != TOKEN_LEN:
        raise ValueError(f"token must decode to {TOKEN_LEN} bytes, got {len(raw)}")
    return raw


def parse_discovery_response(data: bytes) -> DiscoveryResponse | None:
    """
    Parse a discovery reply.

    Layout: 4 bytes device IP (octets reversed), a 2 byte status marker
    ("OK"), ascii device id, 0x00. The marker is not checked.
    Returns None for datagrams too short to carry an id.
    """
    if len(data) < 7:
        return None
    ip = ".".join(str(b) for b in data[3::-1])
    device_id = bytes(data[6:-1]).decode("ascii", errors="replace")
    return DiscoveryResponse(ip=ip, device_id=device_id)


def nodes_capacity(max_datagram_bytes: int = REALTIME_MAX_DATAGRAM_BYTES) -> int:
    cap = (int(max_datagram_bytes) - REALTIME_HEADER_LEN) // 3
    if cap < 1:
        raise ValueError("max_datagram_bytes leaves no room for pixel data")
    return cap


def pack_frame(frame: Frame) -> bytes:
    """Pack a frame into r,g,b bytes. Bytes-like frames are returned as-is."""
    if isinstance(frame, (bytes, bytearray, memoryview)):
        data = bytes(frame)
        if len(data) % 3:
            raise ValueError("packed frame length must be a multiple of 3")
        return data
    out = bytearray(len(frame) * 3)
    for i, node in enumerate(frame):
        r, g, b = node
        j = i * 3
        try:
            out[j] = int(r)
            out[j + 1] = int(g)
            out[j + 2] = int(b)
        except ValueError as e:
            raise ValueError(f"node {i} has a channel outside 0..255: {node!r}") from e
    return bytes(out)


def realtime_header(token_raw: bytes, fragment: int) -> bytes:
    return struct.pack(
        "!B8sBBB", REALTIME_VERSION, token_raw, 0x00, 0x00, int(fragment) & 0xFF
    )


def iter_datagrams(
    token: str | bytes,
    frame: Frame,
    *,
    max_datagram_bytes: int = REALTIME_MAX_DATAGRAM_BYTES,
) -> Iterator[bytes]:
    """Yield the realtime datagrams for one frame, fragment 0 first."""
    token_raw = decode_token(token)
    data = pack_frame(frame)
    max_len = nodes_capacity(max_datagram_bytes) * 3
    for fragment, start in enumerate(range(0, len(data), max_len)):
        yield realtime_header(token_raw, fragment) + data[start : start + max_len]


def fragment_count(
    node_count: int, *, max_datagram_bytes: int = REALTIME_MAX_DATAGRAM_BYTES
) -> int:
    cap = nodes_capacity(max_datagram_bytes)
    return -(-max(0, int(node_count)) // cap)

