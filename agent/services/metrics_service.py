from __future__ import annotations

import dataclasses
from typing import Any, Dict, List

from services.state import AppState
from utils.outbound_metrics import REGISTRY as OUTBOUND_REGISTRY


async def collect_metrics_snapshot(state: AppState) -> Dict[str, Any]:
    """JSON-friendly view of the device, stream and outbound HTTP counters."""
    stream = None
    stream_metrics = None
    if state.streamer is not None:
        stream = dataclasses.asdict(await state.streamer.status())
        stream_metrics = dataclasses.asdict(await state.streamer.metrics())

    return {
        "ok": True,
        "uptime_s": float(state.uptime_s()),
        "device": state.xled.host if state.xled is not None else None,
        "discovered": len(state.discovered),
        "stream": stream,
        "stream_metrics": stream_metrics,
        "outbound": OUTBOUND_REGISTRY.snapshot(),
    }


async def render_metrics(state: AppState) -> str:
    """Prometheus exposition: outbound HTTP series plus realtime stream gauges."""
    lines: List[str] = [OUTBOUND_REGISTRY.render().rstrip("\n")]

    if state.streamer is not None:
        st = await state.streamer.status()
        m = await state.streamer.metrics()
        lines += [
            "# HELP xled_stream_running Whether a realtime stream is active.",
            "# TYPE xled_stream_running gauge",
            f"xled_stream_running {1 if st.running else 0}",
            "# HELP xled_stream_frames_sent_total Frames delivered over realtime UDP.",
            "# TYPE xled_stream_frames_sent_total counter",
            f"xled_stream_frames_sent_total {m.frames_sent_total}",
            "# HELP xled_stream_frames_dropped_total Frames skipped or lost.",
            "# TYPE xled_stream_frames_dropped_total counter",
            f"xled_stream_frames_dropped_total {m.frames_dropped_total}",
            "# HELP xled_stream_datagrams_sent_total Realtime datagrams sent.",
            "# TYPE xled_stream_datagrams_sent_total counter",
            f"xled_stream_datagrams_sent_total {m.datagrams_sent_total}",
            "# HELP xled_stream_send_failures_total Realtime frames aborted by a send error.",
            "# TYPE xled_stream_send_failures_total counter",
            f"xled_stream_send_failures_total {m.send_failures_total}",
        ]

    lines += [
        "# HELP xled_uptime_seconds Seconds since the agent state was built.",
        "# TYPE xled_uptime_seconds gauge",
        f"xled_uptime_seconds {state.uptime_s():.3f}",
    ]
    return "\n".join(lines) + "\n"
