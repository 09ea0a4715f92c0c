from __future__ import annotations

import asyncio
import base64
from typing import List

import pytest

import realtime_streamer as rts
from models.xled import CodeResponse, DeviceDetails, LEDOperationMode
from realtime_sender import RealtimeConfig
from xled_errors import RealtimeSendFailed


TOKEN = base64.b64encode(b"abcdefgh").decode("ascii")


class _DummyXLED:
    def __init__(self, led_count: int = 10) -> None:
        self.led_count = led_count
        self.mode = LEDOperationMode.MOVIE
        self.mode_calls: List[LEDOperationMode] = []
        self.token: str | None = None

    async def get_device_details(self) -> DeviceDetails:
        return DeviceDetails(number_of_led=self.led_count)

    async def get_led_operation_mode(self) -> LEDOperationMode:
        return self.mode

    async def set_led_operation_mode(
        self, mode: LEDOperationMode | str, *, effect_id: int | None = None
    ) -> CodeResponse:
        self.mode = LEDOperationMode(mode)
        self.mode_calls.append(self.mode)
        self.token = TOKEN
        return CodeResponse(code=1000)


class _DummySender:
    instances: List["_DummySender"] = []
    fail_every: int = 0

    def __init__(self, cfg: RealtimeConfig) -> None:
        self.cfg = cfg
        self.frames: List[bytes] = []
        self.tokens: List[str] = []
        self.calls = 0
        self.closed = False
        _DummySender.instances.append(self)

    async def send_frame(self, token: str, rgb: bytes) -> int:
        self.calls += 1
        if self.fail_every and self.calls % self.fail_every == 0:
            raise RealtimeSendFailed(0, self.cfg.host, "No buffer space available")
        self.frames.append(rgb)
        self.tokens.append(token)
        return 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _dummy_sender(monkeypatch):  # type: ignore[no-untyped-def]
    _DummySender.instances = []
    _DummySender.fail_every = 0
    monkeypatch.setattr(rts, "AsyncRealtimeSender", _DummySender)
    yield


def _streamer(xled: _DummyXLED, **kwargs) -> rts.RealtimeStreamer:  # type: ignore[no-untyped-def]
    return rts.RealtimeStreamer(
        xled=xled,  # type: ignore[arg-type]
        rt_cfg=RealtimeConfig(host="127.0.0.1", port=7777),
        fps_default=20.0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_stream_runs_for_duration_and_restores_mode() -> None:
    xled = _DummyXLED(led_count=10)
    streamer = _streamer(xled)

    st = await streamer.start(pattern="solid", params={"color": [255, 0, 0]}, duration_s=0.3)
    assert st.running
    assert st.led_count == 10

    st = await streamer.wait()
    assert not st.running
    assert xled.mode_calls == [LEDOperationMode.RT, LEDOperationMode.MOVIE]

    sender = _DummySender.instances[0]
    assert sender.closed
    assert len(sender.frames) >= 2
    assert all(f == bytes([255, 0, 0]) * 10 for f in sender.frames)
    assert set(sender.tokens) == {TOKEN}
    assert st.frames_sent == len(sender.frames)

    m = await streamer.metrics()
    assert m.frames_sent_total == len(sender.frames)
    assert m.datagrams_sent_total == len(sender.frames)


@pytest.mark.asyncio
async def test_stop_cancels_stream_and_restores_mode() -> None:
    xled = _DummyXLED()
    streamer = _streamer(xled)

    await streamer.start(pattern="racer", duration_s=30.0, fps=30.0)
    await asyncio.sleep(0.2)
    st = await streamer.stop()

    assert not st.running
    assert st.pattern is None
    assert xled.mode == LEDOperationMode.MOVIE
    assert _DummySender.instances[0].closed


@pytest.mark.asyncio
async def test_restore_mode_can_be_disabled() -> None:
    xled = _DummyXLED()
    streamer = _streamer(xled, restore_mode=False)
    await streamer.start(pattern="sparkle", duration_s=0.15)
    await streamer.wait()
    assert xled.mode_calls == [LEDOperationMode.RT]


@pytest.mark.asyncio
async def test_send_failures_are_counted_and_stream_continues() -> None:
    _DummySender.fail_every = 2
    xled = _DummyXLED()
    streamer = _streamer(xled)

    await streamer.start(pattern="random", duration_s=0.4, fps=25.0)
    st = await streamer.wait()

    m = await streamer.metrics()
    assert m.send_failures_total >= 1
    assert m.frames_dropped_total >= m.send_failures_total
    assert m.frames_sent_total >= 1
    assert st.last_error is not None


@pytest.mark.asyncio
async def test_start_rejects_device_without_leds() -> None:
    xled = _DummyXLED(led_count=0)
    streamer = _streamer(xled)
    with pytest.raises(RuntimeError):
        await streamer.start(pattern="solid")
    assert xled.mode_calls == []
    assert not (await streamer.status()).running


@pytest.mark.asyncio
async def test_start_rejects_unknown_pattern_before_switching_mode() -> None:
    xled = _DummyXLED()
    streamer = _streamer(xled)
    with pytest.raises(ValueError):
        await streamer.start(pattern="does_not_exist")
    assert xled.mode_calls == []


@pytest.mark.asyncio
async def test_fps_is_clamped_to_max() -> None:
    xled = _DummyXLED()
    streamer = _streamer(xled, fps_max=30.0)
    st = await streamer.start(pattern="solid", duration_s=0.1, fps=500.0)
    assert st.fps == 30.0
    await streamer.wait()


@pytest.mark.asyncio
async def test_restarting_replaces_running_stream() -> None:
    xled = _DummyXLED()
    streamer = _streamer(xled)
    await streamer.start(pattern="solid", duration_s=30.0)
    await asyncio.sleep(0.1)
    st = await streamer.start(pattern="rainbow", duration_s=0.1)
    assert st.pattern == "rainbow"
    assert _DummySender.instances[0].closed
    await streamer.wait()
    assert xled.mode == LEDOperationMode.MOVIE


class _SlowXLED(_DummyXLED):
    async def get_device_details(self) -> DeviceDetails:
        await asyncio.sleep(0.02)
        return await super().get_device_details()


class _TokenlessXLED(_DummyXLED):
    async def set_led_operation_mode(
        self, mode: LEDOperationMode | str, *, effect_id: int | None = None
    ) -> CodeResponse:
        res = await super().set_led_operation_mode(mode, effect_id=effect_id)
        self.token = None
        return res


@pytest.mark.asyncio
async def test_overlapping_starts_leave_one_stream_that_stop_ends() -> None:
    xled = _SlowXLED()
    streamer = _streamer(xled)

    _, second = await asyncio.gather(
        streamer.start(pattern="solid", duration_s=30.0),
        streamer.start(pattern="racer", duration_s=30.0),
    )
    assert second.running
    assert second.pattern == "racer"
    await asyncio.sleep(0.1)
    st = await streamer.stop()
    assert not st.running

    calls = [s.calls for s in _DummySender.instances]
    await asyncio.sleep(0.15)
    assert [s.calls for s in _DummySender.instances] == calls
    assert len(_DummySender.instances) == 2
    assert all(s.closed for s in _DummySender.instances)
    assert xled.mode == LEDOperationMode.MOVIE


@pytest.mark.asyncio
async def test_missing_token_after_rt_switch_restores_previous_mode() -> None:
    xled = _TokenlessXLED()
    streamer = _streamer(xled)
    with pytest.raises(RuntimeError):
        await streamer.start(pattern="solid")

    assert xled.mode_calls == [LEDOperationMode.RT, LEDOperationMode.MOVIE]
    assert xled.mode == LEDOperationMode.MOVIE
    assert not (await streamer.status()).running
    assert _DummySender.instances == []
