from __future__ import annotations

import pytest

from config.settings import load_settings


_ENV = (
    "XLED_HOST",
    "XLED_HTTP_TIMEOUT_S",
    "XLED_HEADERS_JSON",
    "XLED_DISCOVERY_TIMEOUT_S",
    "XLED_DISCOVERY_BROADCAST",
    "XLED_DISCOVERY_PORT",
    "XLED_RT_PORT",
    "XLED_RT_MAX_DATAGRAM_BYTES",
    "XLED_RT_FPS_DEFAULT",
    "XLED_RT_FPS_MAX",
    "XLED_RT_DROP_LATE_FRAMES",
    "XLED_RT_MAX_LAG_S",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    s = load_settings()
    assert s.xled_host == ""
    assert s.xled_http_timeout_s == 2.5
    assert s.xled_headers == ()
    assert s.discovery_timeout_s == 1.0
    assert s.discovery_broadcast is None
    assert s.discovery_port == 5555
    assert s.rt_port == 7777
    assert s.rt_max_datagram_bytes == 900
    assert s.rt_fps_default == 20.0
    assert s.rt_fps_max == 45.0
    assert s.rt_drop_late_frames is True
    assert s.rt_max_lag_s == 0.25


def test_config_parses_xled_headers_json(monkeypatch) -> None:
    monkeypatch.setenv("XLED_HOST", "10.0.0.5")
    monkeypatch.setenv(
        "XLED_HEADERS_JSON", '{"Authorization":"Bearer token","X-Test":1,"X-None":null}'
    )
    s = load_settings()
    assert s.xled_host == "10.0.0.5"
    assert ("Authorization", "Bearer token") in s.xled_headers
    assert ("X-Test", "1") in s.xled_headers
    assert all(k != "X-None" for k, _ in s.xled_headers)


def test_bad_values_fall_back_or_clamp(monkeypatch) -> None:
    monkeypatch.setenv("XLED_HEADERS_JSON", "[1,2,3]")
    monkeypatch.setenv("XLED_HTTP_TIMEOUT_S", "soon")
    monkeypatch.setenv("XLED_RT_PORT", "99999")
    monkeypatch.setenv("XLED_RT_MAX_DATAGRAM_BYTES", "5")
    monkeypatch.setenv("XLED_RT_FPS_DEFAULT", "60")
    monkeypatch.setenv("XLED_RT_FPS_MAX", "30")
    monkeypatch.setenv("XLED_RT_DROP_LATE_FRAMES", "off")
    monkeypatch.setenv("XLED_DISCOVERY_BROADCAST", " 192.168.1.255 ")

    s = load_settings()
    assert s.xled_headers == ()
    assert s.xled_http_timeout_s == 2.5
    assert s.rt_port == 65535
    assert s.rt_max_datagram_bytes == 15
    assert s.rt_fps_max == 60.0
    assert s.rt_drop_late_frames is False
    assert s.discovery_broadcast == "192.168.1.255"
