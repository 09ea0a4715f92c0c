from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Type, TypeVar
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ValidationError

from models.xled import (
    CodeResponse,
    DeviceDetails,
    FirmwareVersion,
    LEDOperationMode,
    LEDOperationModeResponse,
    LoginRequest,
    LoginResponse,
    SetLEDOperationModeRequest,
    VerifyRequest,
)
from utils.outbound_http import send_request
from xled_errors import AuthenticationFailed, RequestFailed, XLEDError
from xled_protocol import decode_token, make_challenge


log = logging.getLogger(__name__)

API_BASE_PATH = "/xled/v1"
AUTH_HEADER = "X-Auth-Token"

LOGIN_PATH = "/login"
VERIFY_PATH = "/verify"
LOGOUT_PATH = "/logout"

_M = TypeVar("_M", bound=BaseModel)


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    VERIFIED = "verified"


def normalize_base_url(host_or_url: str) -> str:
    """Turn `10.0.0.5`, `10.0.0.5/` or `http://10.0.0.5` into the API base URL."""
    raw = str(host_or_url or "").strip().rstrip("/")
    if not raw:
        raise ValueError("device host is required")
    if not raw.startswith("http://") and not raw.startswith("https://"):
        raw = "http://" + raw
    if not raw.endswith(API_BASE_PATH):
        raw = raw + API_BASE_PATH
    return raw


def _decode_body(resp: httpx.Response) -> Any:
    if resp.status_code == 204 or not resp.content.strip():
        return {}
    try:
        return resp.json()
    except Exception:
        # Some endpoints answer with plain text; hand it back untouched.
        return {"raw": resp.text[:200]}


class XLEDSession:
    """
    Authenticated HTTP session against one device.

    The token is acquired lazily on the first `request()` via login + verify.
    Only one login/verify sequence runs at a time; concurrent callers wait for
    it and reuse the resulting token.
    """

    def __init__(
        self,
        host_or_url: str,
        *,
        client: httpx.AsyncClient,
        timeout_s: float = 2.5,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.base_url = normalize_base_url(host_or_url)
        self.timeout_s = float(timeout_s)
        self._client = client
        self._extra_headers: Dict[str, str] = dict(headers or {})
        self._target = urlparse(self.base_url).netloc or self.base_url
        self._auth_lock = asyncio.Lock()
        self._state = SessionState.UNAUTHENTICATED
        self._token: str | None = None
        self._last_error: str | None = None
        self.login_count = 0

    @property
    def host(self) -> str:
        return urlparse(self.base_url).hostname or ""

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token(self) -> str | None:
        return self._token if self._state == SessionState.VERIFIED else None

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def _headers(
        self, token: str | None, extra: Optional[Mapping[str, str]]
    ) -> Dict[str, str]:
        out = dict(self._extra_headers)
        if extra:
            out.update(extra)
        if token:
            out[AUTH_HEADER] = token
        return out

    def invalidate(self) -> None:
        """Forget the current token; the next request logs in again."""
        self._token = None
        self._state = SessionState.UNAUTHENTICATED

    async def ensure_authenticated(self) -> str:
        token = self.token
        if token is not None:
            return token
        async with self._auth_lock:
            # Another caller may have finished while we waited for the lock.
            token = self.token
            if token is not None:
                return token
            return await self._authenticate()

    async def _authenticate(self) -> str:
        self._state = SessionState.AUTHENTICATING
        self._token = None
        try:
            login = await self._auth_call(
                LOGIN_PATH,
                LoginRequest(challenge=make_challenge()).model_dump(),
                token=None,
                model=LoginResponse,
            )
            token = login.authentication_token
            try:
                decode_token(token)
            except ValueError as e:
                raise AuthenticationFailed(
                    f"login returned a malformed token: {e}"
                ) from e

            verify_body = VerifyRequest(challenge_response=login.challenge_response)
            await self._auth_call(
                VERIFY_PATH,
                verify_body.model_dump(by_alias=True, exclude_none=True),
                token=token,
                model=CodeResponse,
            )
        except AuthenticationFailed as e:
            self._last_error = str(e)
            log.warning("Authentication with %s failed: %s", self._target, e)
            raise
        finally:
            if self._state == SessionState.AUTHENTICATING:
                self._state = SessionState.UNAUTHENTICATED

        self._token = token
        self._state = SessionState.VERIFIED
        self._last_error = None
        self.login_count += 1
        log.info("Authenticated with %s", self._target)
        return token

    async def _auth_call(
        self,
        path: str,
        payload: Dict[str, Any],
        *,
        token: str | None,
        model: Type[_M],
    ) -> _M:
        url = self._url(path)
        try:
            resp = await send_request(
                client=self._client,
                method="POST",
                url=url,
                target_kind="xled",
                target=str(self._target),
                timeout_s=self.timeout_s,
                headers=self._headers(token, None),
                json_body=payload,
            )
        except Exception as e:
            raise AuthenticationFailed(f"POST {url} failed: {e}") from e
        if not resp.is_success:
            raise AuthenticationFailed(
                f"POST {url} -> HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            out = model.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise AuthenticationFailed(
                f"POST {url} returned an unexpected body: {e}"
            ) from e
        if isinstance(out, CodeResponse) and not out.ok:
            raise AuthenticationFailed(f"POST {url} returned device code {out.code}")
        return out

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """
        Perform an authenticated request and return the decoded response body.

        Structured bodies (dict/list) are sent as JSON; bytes or str bodies are
        passed through unchanged.
        """
        token = await self.ensure_authenticated()
        url = self._url(path)
        json_body: Any = None
        content: bytes | str | None = None
        if isinstance(body, (dict, list)):
            json_body = body
        elif isinstance(body, (bytes, bytearray, memoryview)):
            content = bytes(body)
        elif body is not None:
            content = str(body)

        try:
            resp = await send_request(
                client=self._client,
                method=method,
                url=url,
                target_kind="xled",
                target=str(self._target),
                timeout_s=self.timeout_s,
                headers=self._headers(token, headers),
                json_body=json_body,
                content=content,
            )
        except Exception as e:
            raise XLEDError(f"{str(method).upper()} {url} failed: {e}") from e
        if not resp.is_success:
            if resp.status_code == 401 and self._token == token:
                # Token expired or was replaced by another client. A late 401
                # for an older token must not drop a newer one.
                self.invalidate()
            raise RequestFailed(resp.status_code, url, resp.text[:200])
        return _decode_body(resp)

    async def logout(self) -> Any:
        try:
            return await self.request(LOGOUT_PATH, "POST")
        finally:
            self.invalidate()


class AsyncXLEDClient:
    """Device commands needed for realtime control, on top of `XLEDSession`."""

    def __init__(
        self,
        host_or_url: str,
        *,
        client: httpx.AsyncClient,
        timeout_s: float = 2.5,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.session = XLEDSession(
            host_or_url, client=client, timeout_s=timeout_s, headers=headers
        )

    @property
    def host(self) -> str:
        return self.session.host

    @property
    def token(self) -> str | None:
        return self.session.token

    async def _get_model(self, path: str, model: Type[_M], **kwargs: Any) -> _M:
        out = await self.session.request(path, **kwargs)
        try:
            return model.model_validate(out)
        except ValidationError as e:
            raise XLEDError(f"Unexpected {path} response: {e}") from e

    async def get_device_details(self) -> DeviceDetails:
        return await self._get_model("/gestalt", DeviceDetails)

    async def get_fw_version(self) -> FirmwareVersion:
        return await self._get_model("/fw/version", FirmwareVersion)

    async def get_led_operation_mode(self) -> LEDOperationMode:
        out = await self._get_model("/led/mode", LEDOperationModeResponse)
        return out.mode

    async def set_led_operation_mode(
        self, mode: LEDOperationMode | str, *, effect_id: int | None = None
    ) -> CodeResponse:
        req = SetLEDOperationModeRequest(
            mode=LEDOperationMode(mode), effect_id=effect_id
        )
        return await self._get_model(
            "/led/mode",
            CodeResponse,
            method="POST",
            body=req.model_dump(mode="json", exclude_none=True),
        )

    async def echo(self, body: Dict[str, Any]) -> Any:
        return await self.session.request("/echo", "POST", body)

    async def send_realtime_frame_http(self, rgb: bytes) -> CodeResponse:
        """POST one headerless frame to /led/rt/frame (used during light mapping)."""
        return await self._get_model(
            "/led/rt/frame",
            CodeResponse,
            method="POST",
            body=bytes(rgb),
            headers={"Content-Type": "application/octet-stream"},
        )

    async def logout(self) -> Any:
        return await self.session.logout()
