from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from models.xled import LEDOperationMode
from patterns import Pattern, create_pattern
from realtime_sender import AsyncRealtimeSender, RealtimeConfig
from xled_client import AsyncXLEDClient
from xled_errors import RealtimeSendFailed


log = logging.getLogger(__name__)


@dataclass
class StreamStatus:
    running: bool = False
    pattern: str | None = None
    fps: float | None = None
    started_at: float | None = None
    frames_sent: int = 0
    led_count: int = 0
    last_error: str | None = None


@dataclass
class StreamMetrics:
    frames_sent_total: int = 0
    frames_dropped_total: int = 0
    datagrams_sent_total: int = 0
    send_failures_total: int = 0
    lag_s_sum: float = 0.0
    lag_s_count: int = 0
    lag_s_last: float | None = None
    lag_s_max: float = 0.0


class FramePacer:
    """
    Fixed-rate frame clock.

    `tick()` sleeps until the next frame is due and returns (lag, skipped):
    how late the frame is, and how many frame slots were skipped to catch up
    when late-frame dropping is enabled and the lag exceeded `max_lag_s`.
    """

    def __init__(
        self, fps: float, *, duration_s: float, drop_late: bool, max_lag_s: float
    ) -> None:
        self.period = max(0.001, 1.0 / fps)
        self.drop_late = drop_late
        self.max_lag_s = max_lag_s
        self._t0 = time.monotonic()
        self._deadline = self._t0 + duration_s
        self._due = self._t0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._t0

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._deadline

    def advance(self) -> None:
        self._due += self.period

    async def tick(self) -> Tuple[float, int]:
        now = time.monotonic()
        if now < self._due:
            await asyncio.sleep(self._due - now)
            now = time.monotonic()
        lag = now - self._due
        skipped = 0
        if self.drop_late and lag > self.max_lag_s:
            skipped = int(lag / self.period)
            self._due += skipped * self.period
            lag = now - self._due
        return max(0.0, lag), skipped


class RealtimeStreamer:
    """
    Feeds one device with pattern frames over the realtime UDP channel.

    The device falls back out of `rt` mode when datagrams stop arriving, so
    frames are pushed at a steady rate for the whole run. When the run ends
    (duration, `stop()`, or an error) the LED mode that was active before
    `start()` is put back.
    """

    def __init__(
        self,
        *,
        xled: AsyncXLEDClient,
        rt_cfg: RealtimeConfig,
        fps_default: float = 20.0,
        fps_max: float = 45.0,
        drop_late_frames: bool = True,
        max_lag_s: float = 0.25,
        restore_mode: bool = True,
    ) -> None:
        self.xled = xled
        self.rt_cfg = rt_cfg
        self.fps_default = float(fps_default)
        self.fps_max = max(1.0, float(fps_max))
        self.drop_late_frames = bool(drop_late_frames)
        self.max_lag_s = max(0.0, float(max_lag_s))
        self.restore_mode = bool(restore_mode)

        self._lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._restore_to: LEDOperationMode | None = None
        self._st = StreamStatus()
        self._m = StreamMetrics()

    async def status(self) -> StreamStatus:
        async with self._lock:
            return dataclasses.replace(self._st)

    async def metrics(self) -> StreamMetrics:
        async with self._lock:
            return dataclasses.replace(self._m)

    async def start(
        self,
        *,
        pattern: str,
        params: Optional[Mapping[str, Any]] = None,
        duration_s: float = 30.0,
        brightness: int = 255,
        fps: Optional[float] = None,
    ) -> StreamStatus:
        rate = float(self.fps_default if fps is None else fps)
        rate = min(self.fps_max, max(1.0, rate))
        # One start at a time, or an overlapping call would leave a task
        # behind that stop() can no longer reach.
        async with self._start_lock:
            led_count = await self._start(
                pattern=pattern,
                params=params,
                duration_s=duration_s,
                brightness=brightness,
                rate=rate,
            )
        log.info(
            "Streaming '%s' to %s: %d LEDs at %.1f fps",
            pattern,
            self.rt_cfg.host,
            led_count,
            rate,
        )
        return await self.status()

    async def _start(
        self,
        *,
        pattern: str,
        params: Optional[Mapping[str, Any]],
        duration_s: float,
        brightness: int,
        rate: float,
    ) -> int:
        await self.stop()

        details = await self.xled.get_device_details()
        led_count = int(details.number_of_led)
        if led_count <= 0:
            raise RuntimeError("device reports no LEDs (number_of_led=0)")
        pat = create_pattern(pattern, led_count, params)

        restore_to: LEDOperationMode | None = None
        try:
            restore_to = await self.xled.get_led_operation_mode()
        except Exception as e:
            log.debug("LED mode unknown before streaming: %s", e)
        await self.xled.set_led_operation_mode(LEDOperationMode.RT)
        try:
            token = self.xled.token
            if token is None:
                raise RuntimeError("no session token after entering rt mode")

            pacer = FramePacer(
                rate,
                duration_s=max(0.1, float(duration_s)),
                drop_late=self.drop_late_frames,
                max_lag_s=self.max_lag_s,
            )
            async with self._lock:
                self._restore_to = restore_to
                self._st = StreamStatus(
                    running=True,
                    pattern=pattern,
                    fps=rate,
                    started_at=time.time(),
                    led_count=led_count,
                )
                self._m.lag_s_last = None
                self._m.lag_s_max = 0.0
                self._task = asyncio.create_task(
                    self._run(pat, token, pacer, max(0, min(255, int(brightness)))),
                    name="realtime_streamer",
                )
        except BaseException:
            await self._restore(restore_to)
            raise
        return led_count

    async def stop(self) -> StreamStatus:
        async with self._lock:
            task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._finish()
        return await self.status()

    async def wait(self) -> StreamStatus:
        """Block until the current run (if any) ends on its own."""
        async with self._lock:
            task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return await self.status()

    async def _finish(self) -> None:
        async with self._lock:
            if not self._st.running:
                return
            self._st.running = False
            self._st.pattern = None
            self._st.fps = None
            self._task = None
            restore_to, self._restore_to = self._restore_to, None
        await self._restore(restore_to)

    async def _restore(self, restore_to: LEDOperationMode | None) -> None:
        if not self.restore_mode or restore_to in (None, LEDOperationMode.RT):
            return
        try:
            await self.xled.set_led_operation_mode(restore_to)
        except Exception as e:
            log.warning("Failed to restore LED mode '%s': %s", restore_to, e)

    async def _run(
        self, pat: Pattern, token: str, pacer: FramePacer, brightness: int
    ) -> None:
        sender = AsyncRealtimeSender(self.rt_cfg)
        idx = 0
        try:
            while not pacer.expired:
                lag, skipped = await pacer.tick()
                rgb = await asyncio.to_thread(
                    pat.frame, t=pacer.elapsed, frame_idx=idx, brightness=brightness
                )
                pacer.advance()
                try:
                    n = await sender.send_frame(token, rgb)
                except RealtimeSendFailed as e:
                    log.warning("Realtime frame %d lost: %s", idx, e)
                    async with self._lock:
                        self._m.send_failures_total += 1
                        self._m.frames_dropped_total += 1 + skipped
                        self._st.last_error = str(e)
                    continue
                idx += 1
                async with self._lock:
                    self._st.frames_sent = idx
                    m = self._m
                    m.frames_sent_total += 1
                    m.frames_dropped_total += skipped
                    m.datagrams_sent_total += n
                    m.lag_s_sum += lag
                    m.lag_s_count += 1
                    m.lag_s_last = lag
                    m.lag_s_max = max(m.lag_s_max, lag)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.exception("Realtime stream to %s aborted", self.rt_cfg.host)
            async with self._lock:
                self._st.last_error = str(e)
        finally:
            sender.close()
            await self._finish()
