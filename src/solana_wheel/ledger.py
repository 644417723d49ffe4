from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from .project_constants import BASELINE_TOTAL_DISTRIBUTED, MAX_HISTORY

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Winner:
    address: str
    display_address: str
    amount: int
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "displayAddress": self.display_address,
            "amount": self.amount,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class SpinRecord:
    id: int
    winner: Winner
    timestamp: datetime
    distribution: Optional[Decimal] = None
    tx_signature: Optional[str] = None
    solscan_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire/API form."""
        return {
            "id": self.id,
            "winner": self.winner.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "timestampReadable": self.timestamp.strftime("%I:%M:%S %p"),
            "distribution": float(self.distribution) if self.distribution is not None else None,
            "txSignature": self.tx_signature,
            "solscanUrl": self.solscan_url,
        }

    def to_storage(self) -> Dict[str, Any]:
        d = self.to_dict()
        del d["timestampReadable"]
        # keep full precision on disk
        d["distribution"] = str(self.distribution) if self.distribution is not None else None
        return d

    @staticmethod
    def from_storage(d: Dict[str, Any]) -> "SpinRecord":
        w = d["winner"]
        dist = d.get("distribution")
        return SpinRecord(
            id=int(d["id"]),
            winner=Winner(
                address=w["address"],
                display_address=w.get("displayAddress") or w["address"],
                amount=int(w.get("amount") or 0),
                percentage=float(w.get("percentage") or 0.0),
            ),
            timestamp=datetime.fromisoformat(d["timestamp"]),
            distribution=Decimal(dist) if dist is not None else None,
            tx_signature=d.get("txSignature"),
            solscan_url=d.get("solscanUrl"),
        )


class MemoryStore:
    """No backing store; state lives only as long as the process."""

    def load(self) -> Optional[Dict[str, Any]]:
        return None

    def save(self, state: Dict[str, Any]) -> None:
        pass


class JsonFileStore:
    def __init__(self, path: str) -> None:
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Could not read %s (%s); starting with empty history", self.path, e)
            return None

    def save(self, state: Dict[str, Any]) -> None:
        # Write to a sibling temp file then rename, so a crash leaves either
        # the old file or the new one.
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            _unlink_quietly(tmp)
            raise


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass


class HistoryLedger:
    """
    Bounded spin history (newest first) plus the running total of SOL sent
    to winners. Every mutation is written through to the store.
    """

    def __init__(
        self,
        store: Any = None,
        capacity: int = MAX_HISTORY,
        baseline_total: Decimal = BASELINE_TOTAL_DISTRIBUTED,
    ) -> None:
        self.store = store or MemoryStore()
        self.capacity = capacity
        self._records: List[SpinRecord] = []
        self._next_id = 1
        self._total = baseline_total
        self._load()

    def _load(self) -> None:
        state = self.store.load()
        if not state:
            return
        if not isinstance(state, dict):
            log.warning("Ignoring history state of type %s", type(state).__name__)
            return
        try:
            records = [SpinRecord.from_storage(r) for r in state.get("records", [])]
            total = Decimal(str(state.get("total_distributed", self._total)))
            next_id = int(state.get("next_id") or 0)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            log.warning("Ignoring malformed history state: %s", e)
            return

        self._records = records[: self.capacity]
        self._total = total
        self._next_id = max(next_id, max((r.id for r in records), default=0) + 1)
        log.info(
            "Loaded %d spins from history (next id %d, total %s SOL)",
            len(self._records),
            self._next_id,
            self._total,
        )

    def _commit(self, records: List[SpinRecord], next_id: int, total: Decimal) -> None:
        state = {
            "next_id": next_id,
            "total_distributed": str(total),
            "records": [r.to_storage() for r in records],
        }
        try:
            self.store.save(state)
        except OSError as e:
            log.error("Failed to persist spin history: %s", e)
        self._records, self._next_id, self._total = records, next_id, total

    @property
    def cumulative_total(self) -> Decimal:
        return self._total

    @property
    def spin_count(self) -> int:
        return self._next_id - 1

    def latest(self) -> Optional[SpinRecord]:
        return self._records[0] if self._records else None

    def recent(self, n: int = 10) -> List[SpinRecord]:
        return list(self._records[: max(n, 0)])

    def append(self, winner: Winner, occurred_at: Optional[datetime] = None) -> SpinRecord:
        record = SpinRecord(
            id=self._next_id,
            winner=winner,
            timestamp=occurred_at or datetime.now(timezone.utc),
        )
        records = [record] + self._records[: self.capacity - 1]
        self._commit(records, self._next_id + 1, self._total)
        return record

    def update_latest_distribution(
        self,
        amount: Decimal,
        signature: Optional[str] = None,
        url: Optional[str] = None,
        expected_id: Optional[int] = None,
    ) -> bool:
        """Fill distribution fields of the newest record. No-op when empty or amount <= 0."""
        if not self._records or amount is None or amount <= 0:
            return False

        latest = self._records[0]
        if expected_id is not None and latest.id != expected_id:
            log.warning("Latest spin is #%d, not #%d; distribution not recorded", latest.id, expected_id)
            return False
        if latest.distribution is not None and (
            latest.distribution,
            latest.tx_signature,
            latest.solscan_url,
        ) != (amount, signature, url):
            log.warning("Spin #%d already has a distribution recorded", latest.id)
            return False

        updated = replace(latest, distribution=amount, tx_signature=signature, solscan_url=url)
        self._commit([updated] + self._records[1:], self._next_id, self._total)
        return True

    def add_to_total(self, amount: Decimal) -> Decimal:
        if amount is None or amount <= 0:
            return self._total
        self._commit(list(self._records), self._next_id, self._total + amount)
        return self._total
