from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

# (target_kind, target, method)
SeriesKey = Tuple[str, str, str]


def _esc(val: str) -> str:
    return str(val).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _labels(key: SeriesKey, **extra: str) -> str:
    pairs = list(zip(("target_kind", "target", "method"), key)) + list(extra.items())
    return ",".join(f'{k}="{_esc(v)}"' for k, v in pairs)


@dataclass
class _Series:
    count: int = 0
    duration_sum_s: float = 0.0
    failures: Dict[str, int] = field(default_factory=dict)


class OutboundPrometheusMetrics:
    """Per-endpoint request counts, latency and failure reasons for outbound HTTP."""

    def __init__(self) -> None:
        self._started_at = time.time()
        self._lock = threading.Lock()
        self._series: Dict[SeriesKey, _Series] = {}

    def _observe(
        self,
        target_kind: str,
        target: str,
        method: str,
        duration_s: float,
        reason: str | None,
    ) -> None:
        key = (str(target_kind), str(target), str(method).upper())
        with self._lock:
            s = self._series.setdefault(key, _Series())
            s.count += 1
            s.duration_sum_s += max(0.0, float(duration_s))
            if reason is not None:
                s.failures[reason] = s.failures.get(reason, 0) + 1

    def observe_success(
        self, *, target_kind: str, target: str, method: str, duration_s: float
    ) -> None:
        self._observe(target_kind, target, method, duration_s, None)

    def observe_failure(
        self,
        *,
        target_kind: str,
        target: str,
        method: str,
        reason: str,
        duration_s: float,
    ) -> None:
        self._observe(target_kind, target, method, duration_s, str(reason))

    def reset(self) -> None:
        with self._lock:
            self._series.clear()

    def _copy(self) -> List[Tuple[SeriesKey, _Series]]:
        with self._lock:
            return [
                (k, _Series(s.count, s.duration_sum_s, dict(s.failures)))
                for k, s in sorted(self._series.items())
            ]

    def snapshot(self) -> Dict[str, Any]:
        by_kind: Dict[str, Dict[str, Any]] = {}
        total_failures = 0
        for (kind, _target, _method), s in self._copy():
            failed = sum(s.failures.values())
            total_failures += failed
            agg = by_kind.setdefault(
                kind, {"requests": 0, "failures": 0, "duration_sum_s": 0.0}
            )
            agg["requests"] += s.count
            agg["failures"] += failed
            agg["duration_sum_s"] += s.duration_sum_s

        for agg in by_kind.values():
            total_s = agg.pop("duration_sum_s")
            agg["avg_latency_s"] = total_s / agg["requests"] if agg["requests"] else 0.0

        return {
            "uptime_s": max(0.0, time.time() - self._started_at),
            "failures_total": total_failures,
            "by_target_kind": by_kind,
        }

    def render(self) -> str:
        """Prometheus text exposition format."""
        series = self._copy()
        out = [
            "# HELP xled_outbound_failures_total Outbound request failures.",
            "# TYPE xled_outbound_failures_total counter",
        ]
        for key, s in series:
            for reason in sorted(s.failures):
                out.append(
                    f"xled_outbound_failures_total{{{_labels(key, reason=reason)}}} "
                    f"{s.failures[reason]}"
                )
        out += [
            "# HELP xled_outbound_request_duration_seconds Outbound request duration summary.",
            "# TYPE xled_outbound_request_duration_seconds summary",
        ]
        for key, s in series:
            lbl = _labels(key)
            out.append(f"xled_outbound_request_duration_seconds_count{{{lbl}}} {s.count}")
            out.append(
                f"xled_outbound_request_duration_seconds_sum{{{lbl}}} {s.duration_sum_s:.6f}"
            )
        return "\n".join(out) + "\n"


REGISTRY = OutboundPrometheusMetrics()
