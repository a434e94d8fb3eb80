"""In-memory counters for settlement and payment confirmation outcomes."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SettlementEventLog:
    last_success_at: datetime | None = None
    last_success_receipt_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class SettlementSnapshot:
    settlements: Dict[str, Dict[str, int]]
    confirmations: Dict[str, Dict[str, int]]
    events: SettlementEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "settlements": self.settlements,
            "confirmations": self.confirmations,
            "events": {
                "last_success_at": self.events.last_success_at.isoformat() if self.events.last_success_at else None,
                "last_success_receipt_id": self.events.last_success_receipt_id,
                "last_failure_at": self.events.last_failure_at.isoformat() if self.events.last_failure_at else None,
                "last_failure_reason": self.events.last_failure_reason,
            },
        }


@dataclass
class SettlementObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _settlements: Dict[str, Counter] = field(default_factory=lambda: {"succeeded": Counter(), "failed": Counter()})
    _confirmations: Dict[str, Counter] = field(default_factory=dict)
    _events: SettlementEventLog = field(default_factory=SettlementEventLog)

    def record_settlement_success(self, rail: str, receipt_id: str) -> None:
        with self._lock:
            self._settlements["succeeded"][rail] += 1
            self._events.last_success_at = _utcnow()
            self._events.last_success_receipt_id = receipt_id

    def record_settlement_failure(self, rail: str, reason: str) -> None:
        with self._lock:
            self._settlements["failed"][rail] += 1
            self._events.last_failure_at = _utcnow()
            self._events.last_failure_reason = reason

    def record_confirmation(self, provider: str, outcome: str) -> None:
        """Count a reconciler resolution (confirmed, replayed, failed, timed_out)."""

        with self._lock:
            self._confirmations.setdefault(provider, Counter())[outcome] += 1

    def snapshot(self) -> SettlementSnapshot:
        with self._lock:
            return SettlementSnapshot(
                settlements={bucket: dict(counter) for bucket, counter in self._settlements.items()},
                confirmations={provider: dict(counter) for provider, counter in self._confirmations.items()},
                events=SettlementEventLog(
                    last_success_at=self._events.last_success_at,
                    last_success_receipt_id=self._events.last_success_receipt_id,
                    last_failure_at=self._events.last_failure_at,
                    last_failure_reason=self._events.last_failure_reason,
                ),
            )

    def reset(self) -> None:
        with self._lock:
            for counter in self._settlements.values():
                counter.clear()
            self._confirmations.clear()
            self._events = SettlementEventLog()


_SETTLEMENT_STORE = SettlementObservabilityStore()


def get_settlement_store() -> SettlementObservabilityStore:
    return _SETTLEMENT_STORE
