from __future__ import annotations

import time
from typing import Any, Mapping, Optional

import httpx

from utils.outbound_metrics import REGISTRY


def failure_reason(*, exc: BaseException | None = None, status: int | None = None) -> str:
    """Metric label for a failed request: transport error class or HTTP status class."""
    if exc is not None:
        if isinstance(exc, httpx.TimeoutException):
            return "timeout"
        return "network" if isinstance(exc, httpx.TransportError) else "error"
    if status is not None and 400 <= status < 600:
        return f"http_{status // 100}xx"
    return "http_error"


async def send_request(
    *,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    target_kind: str,
    target: str,
    timeout_s: float,
    headers: Optional[Mapping[str, str]] = None,
    json_body: Any = None,
    content: bytes | str | None = None,
) -> httpx.Response:
    """
    Send one request through the shared client and record it in REGISTRY.

    There is exactly one attempt. Transport errors are re-raised unchanged;
    non-2xx responses are returned to the caller (and counted as failures).
    """
    verb = str(method).upper()
    t0 = time.perf_counter()
    reason: str | None = None
    try:
        resp = await client.request(
            verb,
            str(url),
            json=json_body,
            content=content,
            headers=dict(headers) if headers else None,
            timeout=float(timeout_s),
        )
        if not resp.is_success:
            reason = failure_reason(status=resp.status_code)
        return resp
    except BaseException as e:
        reason = failure_reason(exc=e)
        raise
    finally:
        elapsed = time.perf_counter() - t0
        if reason is None:
            REGISTRY.observe_success(
                target_kind=target_kind, target=target, method=verb, duration_s=elapsed
            )
        else:
            REGISTRY.observe_failure(
                target_kind=target_kind,
                target=target,
                method=verb,
                reason=reason,
                duration_s=elapsed,
            )
