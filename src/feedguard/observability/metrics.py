from __future__ import annotations

from collections import Counter, deque

from feedguard.schemas import FetchAttempt, FetchOutcome


class FetchMetricsCollector:
    def __init__(self, max_history: int = 1000):
        self._history: deque[FetchAttempt] = deque(maxlen=max_history)

    def record(self, attempt: FetchAttempt) -> None:
        self._history.append(attempt)

    @property
    def total_attempts(self) -> int:
        return len(self._history)

    @property
    def avg_latency_ms(self) -> float:
        if not self._history:
            return 0.0
        return sum(a.elapsed_ms for a in self._history) / len(self._history)

    @property
    def blocked_rate(self) -> float:
        if not self._history:
            return 0.0
        blocked = sum(1 for a in self._history if a.outcome is FetchOutcome.BLOCKED)
        return blocked / len(self._history)

    @property
    def bytes_read(self) -> int:
        return sum(a.bytes_read for a in self._history)

    def outcome_counts(self) -> dict[str, int]:
        counts = Counter(a.outcome.value for a in self._history)
        return {outcome.value: counts.get(outcome.value, 0) for outcome in FetchOutcome}

    def p95_latency_ms(self) -> float:
        if not self._history:
            return 0.0
        latencies = sorted(a.elapsed_ms for a in self._history)
        idx = int(len(latencies) * 0.95)
        return latencies[min(idx, len(latencies) - 1)]

    def summary(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "p95_latency_ms": round(self.p95_latency_ms(), 1),
            "blocked_rate": round(self.blocked_rate, 3),
            "bytes_read": self.bytes_read,
            "outcomes": self.outcome_counts(),
        }
