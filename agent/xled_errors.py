from __future__ import annotations


class XLEDError(RuntimeError):
    pass


class AuthenticationFailed(XLEDError):
    pass


class RequestFailed(XLEDError):
    def __init__(self, status: int, url: str, detail: str = "") -> None:
        self.status = int(status)
        self.url = str(url)
        msg = f"{self.url} -> HTTP {self.status}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class DiscoveryError(XLEDError):
    pass


class DiscoverySendFailed(DiscoveryError):
    def __init__(self, broadcast_address: str, reason: str) -> None:
        self.broadcast_address = str(broadcast_address)
        super().__init__(f"discovery probe to {self.broadcast_address} failed: {reason}")


class RealtimeSendFailed(XLEDError):
    def __init__(self, fragment: int, host: str, reason: str) -> None:
        self.fragment = int(fragment)
        self.host = str(host)
        super().__init__(
            f"realtime fragment {self.fragment} to {self.host} failed: {reason}"
        )
