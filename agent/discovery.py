from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import psutil

from xled_errors import DiscoveryError, DiscoverySendFailed
from xled_protocol import DISCOVERY_PORT, DISCOVERY_PROBE, parse_discovery_response


log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 1.0
FALLBACK_BROADCAST = "255.255.255.255"


@dataclass(frozen=True)
class Device:
    ip: str
    port: int
    device_id: str


@dataclass(frozen=True)
class InterfaceAddress:
    name: str
    address: str
    netmask: str

    @property
    def broadcast(self) -> str:
        return broadcast_address(self.address, self.netmask)


def broadcast_address(address: str, netmask: str) -> str:
    """Subnet broadcast: host address OR'd with the inverted netmask."""
    ip = int(ipaddress.IPv4Address(address))
    mask = int(ipaddress.IPv4Address(netmask))
    return str(ipaddress.IPv4Address(ip | (~mask & 0xFFFFFFFF)))


def local_ipv4_interfaces() -> List[InterfaceAddress]:
    """Non-loopback IPv4 interfaces that have a netmask."""
    out: List[InterfaceAddress] = []
    for name, addrs in psutil.net_if_addrs().items():
        for a in addrs:
            if a.family != socket.AF_INET or not a.netmask:
                continue
            try:
                if ipaddress.IPv4Address(a.address).is_loopback:
                    continue
            except ValueError:
                continue
            out.append(
                InterfaceAddress(name=name, address=a.address, netmask=a.netmask)
            )
    return out


def broadcast_targets(interfaces: Sequence[InterfaceAddress]) -> List[str]:
    # Two interfaces on the same subnet would probe twice; keep the first.
    seen: set[str] = set()
    out: List[str] = []
    for iface in interfaces:
        try:
            bcast = iface.broadcast
        except ValueError:
            log.debug("Skipping %s: bad address/netmask", iface.name)
            continue
        if bcast in seen:
            continue
        seen.add(bcast)
        out.append(bcast)
    return out


def dedupe_devices(devices: Sequence[Device]) -> List[Device]:
    seen: set[str] = set()
    uniq: List[Device] = []
    for d in devices:
        if d.device_id in seen:
            continue
        seen.add(d.device_id)
        uniq.append(d)
    return uniq


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.devices: Dict[str, Device] = {}
        self.error: Exception | None = None

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        resp = parse_discovery_response(data)
        if resp is None:
            log.debug("Ignoring non-discovery datagram from %s: %r", addr, data[:32])
            return
        if resp.device_id in self.devices:
            return
        # dict keeps insertion order, so arrival order is preserved.
        self.devices[resp.device_id] = Device(
            ip=str(addr[0]), port=int(addr[1]), device_id=resp.device_id
        )

    def error_received(self, exc: Exception) -> None:
        self.error = exc
        log.debug("Discovery socket error: %s", exc)


def _make_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.bind(("0.0.0.0", 0))
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


async def probe(
    broadcast: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    port: int = DISCOVERY_PORT,
) -> List[Device]:
    """
    One probe-and-collect round on a single broadcast address.

    Raises OSError if the socket can't be set up and DiscoverySendFailed if
    the probe can't be sent. Replies are collected until `timeout_s` expires;
    the socket is closed at that point and later replies are dropped.
    """
    loop = asyncio.get_running_loop()
    sock = _make_socket()
    # Send on the raw socket so a failure surfaces here instead of being
    # routed to error_received(). Replies queue in the kernel meanwhile.
    try:
        sock.sendto(DISCOVERY_PROBE, (broadcast, int(port)))
    except OSError as e:
        sock.close()
        raise DiscoverySendFailed(broadcast, str(e)) from e
    try:
        transport, proto = await loop.create_datagram_endpoint(
            _DiscoveryProtocol, sock=sock
        )
    except BaseException:
        sock.close()
        raise
    try:
        await asyncio.sleep(max(0.0, float(timeout_s)))
    finally:
        transport.close()
    if not proto.devices and proto.error is not None:
        log.debug("Probe to %s saw socket error: %s", broadcast, proto.error)
    return list(proto.devices.values())


async def discover(
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    broadcast_address: Optional[str] = None,
    port: int = DISCOVERY_PORT,
) -> List[Device]:
    """
    Find devices on the local network(s).

    With `broadcast_address`, only that address is probed. Otherwise every
    non-loopback IPv4 interface gets its own concurrent round. A failing
    interface is logged and skipped; the call only fails when no round could
    open a socket at all.
    """
    if broadcast_address:
        targets = [str(broadcast_address)]
    else:
        targets = broadcast_targets(local_ipv4_interfaces())
        if not targets:
            log.info("No IPv4 interfaces found; probing %s", FALLBACK_BROADCAST)
            targets = [FALLBACK_BROADCAST]

    log.debug("Discovery probing %s (timeout %.3fs)", ", ".join(targets), timeout_s)
    results = await asyncio.gather(
        *(probe(t, timeout_s=timeout_s, port=port) for t in targets),
        return_exceptions=True,
    )

    devices: List[Device] = []
    setup_errors: List[BaseException] = []
    for target, res in zip(targets, results):
        if isinstance(res, DiscoverySendFailed):
            log.warning("%s", res)
            continue
        if isinstance(res, OSError):
            log.warning("Discovery socket setup for %s failed: %s", target, res)
            setup_errors.append(res)
            continue
        if isinstance(res, BaseException):
            raise res
        devices.extend(res)

    if setup_errors and len(setup_errors) == len(targets):
        raise DiscoveryError(f"could not open a discovery socket: {setup_errors[0]}")

    out = dedupe_devices(devices)
    log.info("Discovery found %d device(s)", len(out))
    return out
