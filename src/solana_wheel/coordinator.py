from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from . import project_constants as pc
from .distribution import (
    MALFORMED_RESPONSE,
    NETWORK_ERRORS,
    DistributionError,
    DistributionOrchestrator,
    DistributionOutcome,
)
from .draw import WeightedSelector, winning_degree
from .holders import Segment, WheelData, build_segments
from .ledger import HistoryLedger, SpinRecord, Winner

log = logging.getLogger(__name__)


class AlreadySpinning(RuntimeError):
    pass


class NoHoldersAvailable(RuntimeError):
    pass


class SpinPhase(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    ANNOUNCED = "announced"
    DISTRIBUTING = "distributing"


@dataclass(frozen=True)
class WheelState:
    wheel: WheelData = WheelData()
    holders: Tuple[Tuple[str, int], ...] = ()
    last_winner: Optional[Segment] = None
    phase: SpinPhase = SpinPhase.IDLE
    last_spin_time: float = 0.0
    balance: Optional[Decimal] = None

    @property
    def is_spinning(self) -> bool:
        return self.phase is not SpinPhase.IDLE


@dataclass(frozen=True)
class SpinResult:
    winner: Segment
    winner_index: int
    winning_degree: float
    record: SpinRecord

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner": self.winner.to_dict(),
            "winnerIndex": self.winner_index,
            "winningDegree": self.winning_degree,
            "record": self.record.to_dict(),
        }


class SpinCoordinator:
    """
    Owns the wheel state and runs the spin cycle:
    IDLE -> SELECTING -> ANNOUNCED -> DISTRIBUTING -> IDLE.

    The state is a frozen WheelState replaced in one assignment, so readers
    (HTTP handlers, the broadcaster) always see a consistent snapshot.
    """

    def __init__(
        self,
        token_mint: str,
        ledger: HistoryLedger,
        orchestrator: DistributionOrchestrator,
        broadcaster: Any,
        holder_source: Callable[[], Awaitable[List[Tuple[str, int]]]],
        selector: Optional[WeightedSelector] = None,
        notifier: Any = None,
        spin_interval_s: float = pc.SPIN_INTERVAL_SEC,
        holder_refresh_s: float = pc.HOLDER_REFRESH_SEC,
        animation_delay_s: float = pc.SPIN_ANIMATION_SEC,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        cosmetic_rng: Optional[random.Random] = None,
    ) -> None:
        self.token_mint = token_mint
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.broadcaster = broadcaster
        self.holder_source = holder_source
        self.selector = selector or WeightedSelector()
        self.notifier = notifier
        self.spin_interval_s = spin_interval_s
        self.holder_refresh_s = holder_refresh_s
        self.animation_delay_s = animation_delay_s
        self.clock = clock
        self.sleep = sleep
        self.cosmetic_rng = cosmetic_rng or random.Random()

        self.distribution_task: Optional[asyncio.Task] = None
        self._loops: List[asyncio.Task] = []
        self._state = WheelState(last_spin_time=clock())

    @property
    def state(self) -> WheelState:
        return self._state

    def _update(self, **changes: Any) -> WheelState:
        self._state = replace(self._state, **changes)
        return self._state

    def excluded_addresses(self) -> set:
        operator = self.orchestrator.operator_address
        return {operator} if operator else set()

    def countdown(self, state: Optional[WheelState] = None) -> Dict[str, Any]:
        state = state or self._state
        next_spin = state.last_spin_time + self.spin_interval_s
        remaining = max(0.0, next_spin - self.clock())
        return {
            "remainingMs": int(remaining * 1000),
            "remainingSeconds": math.ceil(remaining),
            "nextSpinTime": datetime.fromtimestamp(next_spin, timezone.utc).isoformat(),
        }

    def history(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.ledger.recent(limit)]

    def snapshot(self) -> Dict[str, Any]:
        s = self._state
        return {
            "tokenMint": self.token_mint,
            "wheelData": s.wheel.to_dict(),
            "lastWinner": s.last_winner.to_dict() if s.last_winner else None,
            "history": self.history(10),
            "nextSpin": self.countdown(s),
            "isSpinning": s.is_spinning,
            "phase": s.phase.value,
            "balance": float(s.balance) if s.balance is not None else None,
            "totalDistributed": float(self.ledger.cumulative_total),
            "totalHolders": len(s.holders),
            "spinCount": self.ledger.spin_count,
            "operatorAddress": self.orchestrator.operator_address,
        }

    async def refresh_holders(self) -> bool:
        try:
            holders = await self.holder_source()
        except NETWORK_ERRORS + MALFORMED_RESPONSE + (AttributeError,) as e:
            log.error("Holder refresh failed, keeping %d cached holders: %s", len(self._state.holders), e)
            return False

        wheel = build_segments(holders, self.excluded_addresses())
        state = self._update(wheel=wheel, holders=tuple(holders))
        log.info("Holder data refreshed: %d holders, %d on the wheel", len(holders), len(wheel.segments))
        await self.broadcaster.publish(
            "holdersUpdate",
            {"wheelData": wheel.to_dict(), "totalHolders": len(state.holders)},
        )
        return True

    async def refresh_balance(self) -> Optional[Decimal]:
        if not self.orchestrator.configured:
            return None
        try:
            balance = await self.orchestrator.balance()
        except DistributionError as e:
            log.warning("Balance refresh failed, keeping cached value: %s", e)
            return self._state.balance
        self._update(balance=balance)
        return balance

    async def spin(self, manual: bool = False) -> SpinResult:
        state = self._state
        if state.is_spinning:
            raise AlreadySpinning("Spin already in progress")
        segments = state.wheel.segments
        if not segments:
            raise NoHoldersAvailable("No holders available for spin")

        # Must leave IDLE before the first await.
        self._update(phase=SpinPhase.SELECTING)
        try:
            await self.broadcaster.publish("spinStart", {"manual": manual})
            winner = self.selector.select(segments)
            index = segments.index(winner)
            degree = winning_degree([s.percentage for s in segments], index, self.cosmetic_rng)

            now = self.clock()
            record = self.ledger.append(
                Winner(
                    address=winner.address,
                    display_address=winner.display_address,
                    amount=winner.amount,
                    percentage=winner.percentage,
                ),
                datetime.fromtimestamp(now, timezone.utc),
            )
            self._update(phase=SpinPhase.ANNOUNCED, last_winner=winner, last_spin_time=now)
        except BaseException:
            self._update(phase=SpinPhase.IDLE)
            raise

        result = SpinResult(winner, index, degree, record)
        log.info("Spin #%d winner: %s (%.2f%%)", record.id, winner.display_address, winner.percentage)
        await self.broadcaster.publish("spinResult", result.to_dict())
        if self.notifier:
            self.notifier.spin_result(record.id, winner.address, winner.percentage, len(segments))

        self.distribution_task = asyncio.create_task(self._settle(result), name=f"distribution-{record.id}")
        return result

    async def _settle(self, result: SpinResult) -> DistributionOutcome:
        record = result.record
        address = result.winner.address
        outcome = DistributionOutcome.failure(DistributionError("Distribution did not run"))
        try:
            if self.animation_delay_s > 0:
                await self.sleep(self.animation_delay_s)
            self._update(phase=SpinPhase.DISTRIBUTING)
            await self.broadcaster.publish("distributionStatus", {"spinId": record.id, "status": "distributing"})

            try:
                outcome = await self.orchestrator.distribute(address)
            except Exception as e:
                log.exception("Distribution for spin #%d crashed", record.id)
                outcome = DistributionOutcome.failure(DistributionError(str(e)))

            if outcome.success and outcome.distributed > 0:
                self.ledger.update_latest_distribution(
                    outcome.distributed, outcome.signature, outcome.proof_url, expected_id=record.id
                )
                self.ledger.add_to_total(outcome.distributed)
            elif outcome.hops:
                log.error(
                    "Spin #%d payout incomplete; last confirmed hop %s needs manual reconciliation",
                    record.id,
                    outcome.hops[-1].signature,
                )
            else:
                log.warning("Spin #%d not paid: %s", record.id, outcome.reason or outcome.kind)

            await self.refresh_balance()
            if self.notifier:
                self.notifier.distribution(record.id, address, outcome)
        finally:
            state = self._update(phase=SpinPhase.IDLE)
            # Sent on every outcome, including errors raised above.
            await self.broadcaster.publish(
                "spinComplete",
                {
                    "winner": result.winner.to_dict(),
                    "history": self.history(10),
                    "nextSpin": self.countdown(state),
                    "distribution": outcome.to_dict(),
                    "balance": float(state.balance) if state.balance is not None else None,
                    "totalDistributed": float(self.ledger.cumulative_total),
                },
            )
        return outcome

    async def wait_idle(self) -> Optional[DistributionOutcome]:
        task = self.distribution_task
        if task is None:
            return None
        return await task

    async def _every(self, interval_s: float, name: str, fn: Callable[[], Awaitable[Any]]) -> None:
        while True:
            await self.sleep(interval_s)
            try:
                await fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("%s tick failed", name)

    async def _auto_spin_tick(self) -> None:
        state = self._state
        if state.is_spinning or not state.wheel.segments:
            return
        if self.clock() < state.last_spin_time + self.spin_interval_s:
            return
        log.info("Auto-spin triggered")
        try:
            await self.spin()
        except (AlreadySpinning, NoHoldersAvailable) as e:
            log.debug("Auto-spin skipped: %s", e)

    async def _countdown_tick(self) -> None:
        if not self._state.is_spinning:
            await self.broadcaster.publish("countdown", self.countdown())

    async def start(self) -> None:
        await self.refresh_holders()
        await self.refresh_balance()
        self._loops = [
            asyncio.create_task(self._every(self.holder_refresh_s, "holder refresh", self.refresh_holders)),
            asyncio.create_task(self._every(1.0, "auto-spin", self._auto_spin_tick)),
            asyncio.create_task(self._every(1.0, "countdown", self._countdown_tick)),
        ]
        log.info("Auto-spin every %ss, holder refresh every %ss", self.spin_interval_s, self.holder_refresh_s)

    async def stop(self) -> None:
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        task = self.distribution_task
        if task is not None and not task.done():
            # Never cancel a payout midway through its hops.
            log.info("Waiting for in-flight distribution to finish")
            await asyncio.gather(task, return_exceptions=True)
