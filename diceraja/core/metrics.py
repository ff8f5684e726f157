"""
In-process counters for the Dice Raja API, exported in Prometheus text format.

Call sites go through the `record_*` helpers so label sets stay fixed:
HTTP traffic by route template, rate-limit blocks by policy category, and
daily reward claims by account kind and outcome.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Tuple

CLAIM_OUTCOMES = ("claimed", "already_claimed", "unavailable")
UNMATCHED_ROUTE = "unmatched"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


def _render_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(value)


class Counter:
    """Monotonic counter with a fixed label schema."""

    def __init__(self, name: str, help_text: str, label_names: Iterable[str] = ()):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Dict[str, object]) -> Tuple[str, ...]:
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"{self.name}: unknown labels {sorted(unknown)}")
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, amount: float = 1, **labels) -> None:
        if amount < 0:
            raise ValueError(f"{self.name}: counters only go up")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def value(self, **labels) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0)

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())

    def render(self) -> List[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        with self._lock:
            samples = sorted(self._values.items())
        for label_values, value in samples:
            if self.label_names:
                pairs = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, label_values))
                lines.append(f"{self.name}{{{pairs}}} {_render_number(value)}")
            else:
                lines.append(f"{self.name} {_render_number(value)}")
        return lines

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, label_names: Iterable[str] = ()) -> Counter:
        with self._lock:
            existing = self._counters.get(name)
            if existing is not None:
                if existing.label_names != tuple(label_names):
                    raise ValueError(f"{name} already registered with labels {existing.label_names}")
                return existing
            counter = self._counters[name] = Counter(name, help_text, label_names)
            return counter

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.render())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            counters = list(self._counters.values())
        for counter in counters:
            counter.clear()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", "HTTP requests by method, route template and status.", ["method", "route", "status"]
)
ratelimit_block_total = METRICS.counter(
    "ratelimit_block_total", "Requests rejected by the rate limiter, by policy category.", ["scope"]
)
reward_claims_total = METRICS.counter(
    "reward_claims_total", "Daily reward claim attempts by account kind and outcome.", ["kind", "outcome"]
)
reward_tokens_awarded_total = METRICS.counter(
    "reward_tokens_awarded_total", "Tokens credited by daily reward claims.", ["kind"]
)


def record_request(method: str, route: str, status: int) -> None:
    http_requests_total.inc(method=method.upper(), route=route or UNMATCHED_ROUTE, status=status)


def record_rate_limit_block(scope: str) -> None:
    ratelimit_block_total.inc(scope=scope)


def record_claim(kind: str, outcome: str, tokens: int = 0) -> None:
    """Count one claim attempt; tokens are only credited for a successful claim."""
    if outcome not in CLAIM_OUTCOMES:
        raise ValueError(f"unknown claim outcome: {outcome}")
    reward_claims_total.inc(kind=kind, outcome=outcome)
    if outcome == "claimed" and tokens:
        reward_tokens_awarded_total.inc(tokens, kind=kind)
