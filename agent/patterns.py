from __future__ import annotations

import colorsys
import random
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

RGB = Tuple[int, int, int]


def clamp8(x: float) -> int:
    return max(0, min(255, int(x)))


def hsv_to_rgb(h: float, s: float, v: float) -> RGB:
    """h wraps at 1.0; s and v are clamped to [0,1]."""
    r, g, b = colorsys.hsv_to_rgb(
        h % 1.0, max(0.0, min(1.0, s)), max(0.0, min(1.0, v))
    )
    return clamp8(r * 255.0), clamp8(g * 255.0), clamp8(b * 255.0)


def scale_rgb(rgb: RGB, bri: int) -> RGB:
    bri = max(0, min(255, int(bri)))
    if bri == 255:
        return rgb
    return (rgb[0] * bri // 255, rgb[1] * bri // 255, rgb[2] * bri // 255)


def _param_color(params: Mapping[str, Any], key: str, default: RGB) -> RGB:
    raw = params.get(key)
    if raw is None:
        return default
    r, g, b = list(raw)[:3]
    return clamp8(r), clamp8(g), clamp8(b)


def _fill(n: int, rgb: RGB) -> bytearray:
    return bytearray(bytes(rgb) * n)


def _put(buf: bytearray, i: int, rgb: RGB) -> None:
    buf[i * 3 : i * 3 + 3] = bytes(rgb)


class Pattern:
    """
    Frame generator for a string of `led_count` LEDs.

    `frame()` returns packed r,g,b bytes (3 per LED) ready for the realtime
    sender; `t` is seconds since the stream started.
    """

    name = "pattern"

    def __init__(self, led_count: int, params: Optional[Mapping[str, Any]] = None) -> None:
        self.led_count = max(0, int(led_count))
        self.params: Dict[str, Any] = dict(params or {})

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        raise NotImplementedError


PATTERNS: Dict[str, Type[Pattern]] = {}


def register(cls: Type[Pattern]) -> Type[Pattern]:
    PATTERNS[cls.name] = cls
    return cls


@register
class Solid(Pattern):
    name = "solid"

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        color = _param_color(self.params, "color", (255, 255, 255))
        return bytes(_fill(self.led_count, scale_rgb(color, brightness)))


@register
class RandomNoise(Pattern):
    """A new random color on every LED, every frame."""

    name = "random"

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        rng = random.Random(int(self.params.get("seed", 0)) * 1_000_003 + frame_idx)
        noise = bytes(rng.getrandbits(8) for _ in range(self.led_count * 3))
        if brightness >= 255:
            return noise
        return bytes(v * brightness // 255 for v in noise)


@register
class Sparkle(Pattern):
    """Random LEDs flash `color` on a dark string; `density` is the lit fraction."""

    name = "sparkle"

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        rng = random.Random(int(self.params.get("seed", 0)) * 1_000_003 + frame_idx)
        density = max(0.0, min(1.0, float(self.params.get("density", 0.1))))
        lit = scale_rgb(_param_color(self.params, "color", (255, 255, 255)), brightness)
        buf = bytearray(self.led_count * 3)
        for i in range(self.led_count):
            if rng.random() < density:
                _put(buf, i, lit)
        return bytes(buf)


@register
class Racer(Pattern):
    """
    A white head with a fading tail, running along the string over a
    background color (blue unless `background` is given).
    """

    name = "racer"

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        n = self.led_count
        if n == 0:
            return b""
        speed = float(self.params.get("speed", 40.0))  # LEDs/sec
        tail = max(1, int(self.params.get("width", 5)))
        bg = scale_rgb(_param_color(self.params, "background", (0, 0, 255)), brightness)

        buf = _fill(n, bg)
        head = int(t * speed) % n
        for k in range(tail):
            i = head - k
            if i < 0:
                break
            v = clamp8(255.0 * (tail - k) / tail)
            _put(buf, i, scale_rgb((v, v, v), brightness))
        return bytes(buf)


@register
class Rainbow(Pattern):
    name = "rainbow"

    def frame(self, *, t: float, frame_idx: int, brightness: int) -> bytes:
        n = self.led_count
        hue_per_s = float(self.params.get("speed", 0.1))
        cycles = float(self.params.get("spread", 1.0))  # rainbows across the string
        offset = t * hue_per_s
        buf = bytearray(n * 3)
        for i in range(n):
            _put(buf, i, scale_rgb(hsv_to_rgb(offset + cycles * i / n, 1.0, 1.0), brightness))
        return bytes(buf)


def available_patterns() -> List[str]:
    return sorted(PATTERNS)


def create_pattern(
    name: str, led_count: int, params: Optional[Mapping[str, Any]] = None
) -> Pattern:
    factory: Callable[..., Pattern] | None = PATTERNS.get(name)
    if factory is None:
        raise ValueError(
            f"Unknown pattern '{name}'. Available: {', '.join(available_patterns())}"
        )
    return factory(led_count, params)
