from __future__ import annotations

import struct

from xled_protocol import LightNode, REALTIME_HEADER_LEN, REALTIME_VERSION


def unpack_datagram(datagram: bytes) -> tuple[int, bytes, bytes]:
    """Split a realtime datagram into (fragment, raw token, rgb payload)."""
    if len(datagram) < REALTIME_HEADER_LEN or datagram[0] != REALTIME_VERSION:
        raise ValueError("not a realtime datagram")
    _ver, token_raw, _r0, _r1, fragment = struct.unpack(
        "!B8sBBB", datagram[:REALTIME_HEADER_LEN]
    )
    return fragment, token_raw, bytes(datagram[REALTIME_HEADER_LEN:])


def nodes_from_bytes(rgb: bytes) -> list[LightNode]:
    return [
        LightNode(rgb[i], rgb[i + 1], rgb[i + 2]) for i in range(0, len(rgb) - 2, 3)
    ]
