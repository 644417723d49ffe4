from __future__ import annotations

import asyncio
from decimal import Decimal

import httpx
import pytest
from solders.keypair import Keypair

from conftest import FakeClaims, FakeNetwork, FixedRng, RecordingBroadcaster, SleepRecorder, new_address
from solana_wheel.coordinator import AlreadySpinning, NoHoldersAvailable, SpinCoordinator, SpinPhase
from solana_wheel.distribution import DistributionOrchestrator
from solana_wheel.draw import WeightedSelector
from solana_wheel.ledger import HistoryLedger

B = new_address()
C = new_address()
HOLDERS = [("POOL", 1_000_000), (B, 400), (C, 100)]


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_coordinator(
    holders=HOLDERS,
    network=None,
    signer="default",
    clock=None,
    sleep=None,
    animation_delay_s=0.0,
):
    async def holder_source():
        if isinstance(holders, Exception):
            raise holders
        return list(holders)

    orchestrator = DistributionOrchestrator(
        network=network or FakeNetwork(),
        claims=FakeClaims(),
        signer=Keypair() if signer == "default" else signer,
        sleep=SleepRecorder(),
    )
    return SpinCoordinator(
        token_mint="MINT",
        ledger=HistoryLedger(),
        orchestrator=orchestrator,
        broadcaster=RecordingBroadcaster(),
        holder_source=holder_source,
        selector=WeightedSelector(cooldown_size=2, rng=FixedRng(0)),
        spin_interval_s=120,
        animation_delay_s=animation_delay_s,
        clock=clock or Clock(),
        sleep=sleep or SleepRecorder(),
        cosmetic_rng=FixedRng(random_value=0.5),
    )


def test_full_spin_cycle() -> None:
    coord = make_coordinator()

    async def run():
        await coord.refresh_holders()
        result = await coord.spin(manual=True)
        outcome = await coord.wait_idle()
        return result, outcome

    result, outcome = asyncio.run(run())

    assert coord.broadcaster.types() == [
        "holdersUpdate",
        "spinStart",
        "spinResult",
        "distributionStatus",
        "spinComplete",
    ]
    assert result.winner.address == B
    assert result.winner_index == 0
    assert result.winning_degree == pytest.approx(144.0)
    assert outcome.success

    latest = coord.ledger.latest()
    assert latest.id == 1
    assert latest.distribution == Decimal("0.001985")
    assert latest.tx_signature == "sig3"
    assert coord.ledger.cumulative_total == Decimal("6.001985")

    complete = coord.broadcaster.last("spinComplete")
    assert complete["distribution"]["success"] is True
    assert complete["history"][0]["txSignature"] == "sig3"
    assert complete["balance"] == 1.0
    assert coord.state.phase is SpinPhase.IDLE
    assert coord.state.last_winner.address == B


def test_second_spin_rejected_while_in_flight() -> None:
    coord = make_coordinator()

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        assert coord.state.phase is SpinPhase.ANNOUNCED
        with pytest.raises(AlreadySpinning):
            await coord.spin()
        await coord.wait_idle()

    asyncio.run(run())

    assert coord.ledger.spin_count == 1
    assert coord.broadcaster.types().count("spinStart") == 1


def test_spin_without_holders() -> None:
    coord = make_coordinator(holders=[("POOL", 10)])

    async def run():
        await coord.refresh_holders()
        await coord.spin()

    with pytest.raises(NoHoldersAvailable):
        asyncio.run(run())
    assert coord.ledger.spin_count == 0
    assert coord.state.phase is SpinPhase.IDLE


def test_failed_payout_leaves_record_unpaid() -> None:
    coord = make_coordinator(network=FakeNetwork(fail_send_at=2))

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        return await coord.wait_idle()

    outcome = asyncio.run(run())

    assert outcome.kind == "failure"
    assert coord.ledger.latest().distribution is None
    assert coord.ledger.cumulative_total == Decimal("6.0")
    assert coord.broadcaster.last("spinComplete")["distribution"]["hops"][0]["sig"] == "sig1"
    assert coord.state.phase is SpinPhase.IDLE


def test_unconfigured_operator_still_spins() -> None:
    coord = make_coordinator(signer=None)

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        return await coord.wait_idle()

    outcome = asyncio.run(run())

    assert outcome.error_code == "NotConfigured"
    assert coord.ledger.spin_count == 1
    assert coord.broadcaster.last("spinComplete")["balance"] is None


def test_animation_delay_before_distribution() -> None:
    sleeper = SleepRecorder()
    coord = make_coordinator(sleep=sleeper, animation_delay_s=5.0)

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        await coord.wait_idle()

    asyncio.run(run())
    assert sleeper.calls == [5.0]


def test_refresh_failure_keeps_cached_wheel() -> None:
    coord = make_coordinator()
    asyncio.run(coord.refresh_holders())
    cached = coord.state.wheel

    coord.holder_source = make_coordinator(holders=httpx.ConnectError("down")).holder_source

    assert asyncio.run(coord.refresh_holders()) is False
    assert coord.state.wheel == cached
    assert coord.broadcaster.types() == ["holdersUpdate"]


def test_operator_never_on_wheel() -> None:
    signer = Keypair()
    operator = str(signer.pubkey())
    coord = make_coordinator(holders=HOLDERS + [(operator, 300)], signer=signer)

    asyncio.run(coord.refresh_holders())

    addresses = [s.address for s in coord.state.wheel.segments]
    assert operator not in addresses
    assert addresses == [B, C]
    assert coord.snapshot()["totalHolders"] == 4


def test_auto_spin_waits_for_interval() -> None:
    clock = Clock(1_000.0)
    coord = make_coordinator(clock=clock)

    async def run():
        await coord.refresh_holders()
        clock.now = 1_050.0
        await coord._auto_spin_tick()
        assert coord.ledger.spin_count == 0

        clock.now = 1_120.0
        await coord._auto_spin_tick()
        await coord.wait_idle()

    asyncio.run(run())

    assert coord.ledger.spin_count == 1
    assert coord.state.last_spin_time == 1_120.0


def test_countdown_and_snapshot() -> None:
    clock = Clock(1_000.0)
    coord = make_coordinator(clock=clock)
    clock.now = 1_030.5

    countdown = coord.countdown()
    snap = coord.snapshot()

    assert countdown["remainingMs"] == 89_500
    assert countdown["remainingSeconds"] == 90
    assert snap["tokenMint"] == "MINT"
    assert snap["isSpinning"] is False
    assert snap["phase"] == "idle"
    assert snap["totalDistributed"] == 6.0
    assert snap["history"] == []


def test_malformed_balance_reply_still_completes_spin() -> None:
    network = FakeNetwork(balance_error=ValueError("Expecting value: line 1 column 1 (char 0)"))
    coord = make_coordinator(network=network)

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        return await coord.wait_idle()

    outcome = asyncio.run(run())

    assert outcome.error_code == "NetworkFailure"
    assert coord.broadcaster.types()[-1] == "spinComplete"
    assert coord.broadcaster.last("spinComplete")["balance"] is None
    assert coord.state.phase is SpinPhase.IDLE


def test_completion_sent_when_settle_raises() -> None:
    class FailingBroadcaster(RecordingBroadcaster):
        async def publish(self, event_type, data=None):
            await super().publish(event_type, data)
            if event_type == "distributionStatus":
                raise RuntimeError("push channel down")

    coord = make_coordinator()
    coord.broadcaster = FailingBroadcaster()

    async def run():
        await coord.refresh_holders()
        await coord.spin()
        await coord.wait_idle()

    with pytest.raises(RuntimeError):
        asyncio.run(run())

    assert coord.broadcaster.types()[-1] == "spinComplete"
    assert coord.broadcaster.last("spinComplete")["distribution"]["success"] is False
    assert coord.state.phase is SpinPhase.IDLE


def test_start_survives_malformed_replies() -> None:
    coord = make_coordinator(
        network=FakeNetwork(balance_error=TypeError("'NoneType' object is not subscriptable")),
        sleep=asyncio.sleep,
    )

    async def run():
        await coord.start()
        await coord.stop()

    asyncio.run(run())

    assert len(coord.state.wheel.segments) == 2
    assert coord.state.balance is None


def test_malformed_holder_entries_keep_cached_wheel() -> None:
    coord = make_coordinator()
    asyncio.run(coord.refresh_holders())
    cached = coord.state.wheel

    coord.holder_source = make_coordinator(holders=AttributeError("'str' object has no attribute 'get'")).holder_source

    assert asyncio.run(coord.refresh_holders()) is False
    assert coord.state.wheel == cached


class GatedSleep:
    def __init__(self) -> None:
        self.calls = []
        self.opened = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.opened is None:
            self.opened = asyncio.Event()
        await self.opened.wait()


def test_holder_refresh_during_spin_swaps_wheel_without_interrupting() -> None:
    D = new_address()
    E = new_address()
    gate = GatedSleep()
    network = FakeNetwork()
    coord = make_coordinator(network=network, sleep=gate, animation_delay_s=5.0)

    async def newer_holders():
        return [("POOL", 1_000_000), (D, 300), (E, 300)]

    async def run():
        await coord.refresh_holders()
        result = await coord.spin()
        # let the settle task reach the animation delay
        while not gate.calls:
            await asyncio.sleep(0)

        coord.holder_source = newer_holders
        assert await coord.refresh_holders()
        assert coord.state.phase is SpinPhase.ANNOUNCED
        assert [s.address for s in coord.state.wheel.segments] == [D, E]

        gate.opened.set()
        outcome = await coord.wait_idle()
        return result, outcome

    result, outcome = asyncio.run(run())

    assert result.winner.address == B
    assert result.record.winner.address == B
    assert outcome.success
    assert network.sent[-1]["destination"] == B
    assert coord.ledger.latest().winner.address == B
    assert [s.address for s in coord.state.wheel.segments] == [D, E]
    assert coord.state.phase is SpinPhase.IDLE
