from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class MatchingSnapshot:
    pipeline: Dict[str, int]
    redemptions: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "pipeline": dict(self.pipeline),
            "redemptions": dict(self.redemptions),
        }


class MatchingObservabilityStore:
    """Collect matching pipeline and redemption telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._pipeline: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)

    def record_batch(self, *, fetched: int, has_more: bool) -> None:
        with self._lock:
            self._pipeline["batches"] += 1
            self._pipeline["fetched"] += fetched
            if has_more:
                self._pipeline["continuations"] += 1

    def record_transaction(self, outcome: str) -> None:
        with self._lock:
            self._pipeline[outcome] += 1

    def record_claims_issued(self, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self._pipeline["claims_issued"] += count

    def record_notification_failure(self) -> None:
        with self._lock:
            self._pipeline["notifications_failed"] += 1

    def record_redemption(self, operation: str, outcome: str) -> None:
        with self._lock:
            self._redemptions[f"{operation}:{outcome}"] += 1

    def snapshot(self) -> MatchingSnapshot:
        with self._lock:
            pipeline = dict(self._pipeline)
            redemptions = dict(self._redemptions)
        return MatchingSnapshot(pipeline=pipeline, redemptions=redemptions)

    def reset(self) -> None:
        with self._lock:
            self._pipeline.clear()
            self._redemptions.clear()


_STORE = MatchingObservabilityStore()


def get_matching_store() -> MatchingObservabilityStore:
    return _STORE


__all__ = ["get_matching_store", "MatchingObservabilityStore", "MatchingSnapshot"]
