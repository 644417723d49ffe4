from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from solana_wheel.broadcast import Broadcaster
from solana_wheel.claims import PumpPortalClaims
from solana_wheel.distribution import DistributionOutcome, HopTransfer, NetworkFailure
from solana_wheel.notify import DiscordNotifier


class FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.messages = []

    async def send_json(self, message) -> None:
        if self.fail and self.messages:
            raise RuntimeError("socket closed")
        self.messages.append(message)


def test_broadcast_drops_failed_clients() -> None:
    hub = Broadcaster()
    good, bad = FakeSocket(), FakeSocket(fail=True)

    async def run():
        await hub.connect(good, {"tokenMint": "MINT"})
        await hub.connect(bad, {"tokenMint": "MINT"})
        await hub.publish("countdown", {"remainingSeconds": 3})
        await hub.publish("spinStart", {"manual": False})

    asyncio.run(run())

    assert hub.client_count == 1
    assert [m["type"] for m in good.messages] == ["init", "countdown", "spinStart"]
    assert bad.messages == [{"type": "init", "data": {"tokenMint": "MINT"}}]


def test_broadcast_without_data_omits_payload() -> None:
    hub = Broadcaster()
    sock = FakeSocket()

    async def run():
        await hub.connect(sock, {})
        await hub.publish("ping")
        await hub.disconnect(sock)
        await hub.publish("after")

    asyncio.run(run())
    assert sock.messages[-1] == {"type": "ping"}
    assert hub.client_count == 0


def _claims(handler) -> PumpPortalClaims:
    claims = PumpPortalClaims(url="https://pump.test/api/trade-local")
    claims.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return claims


def test_claim_request_body_and_tx_bytes() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, content=b"\x01\x02tx")

    async def run():
        claims = _claims(handler)
        try:
            return await claims.request_claim("CREATOR")
        finally:
            await claims.close()

    assert asyncio.run(run()) == b"\x01\x02tx"
    assert bodies[0]["action"] == "collectCreatorFee"
    assert bodies[0]["publicKey"] == "CREATOR"
    assert bodies[0]["pool"] == "pump"


def test_claim_nothing_available_vs_server_error() -> None:
    async def call(status: int):
        claims = _claims(lambda request: httpx.Response(status, text="no fees"))
        try:
            return await claims.request_claim("CREATOR")
        finally:
            await claims.close()

    assert asyncio.run(call(400)) is None
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(call(503))


def test_notifier_disabled_without_webhook() -> None:
    notifier = DiscordNotifier(None)
    notifier.fees_claimed("sig")
    assert not notifier.enabled
    assert notifier._tasks == set()


def test_notifier_outside_event_loop_drops_message() -> None:
    notifier = DiscordNotifier("https://discord.test/webhook")
    notifier.server_start(3000, "MINT")
    assert notifier._tasks == set()


def test_distribution_failure_embed_lists_hops(monkeypatch) -> None:
    posted = []
    notifier = DiscordNotifier("https://discord.test/webhook")
    monkeypatch.setattr(notifier, "post", lambda *args: posted.append(args))
    hop = HopTransfer("A", "B", 1_995_000, "sig1")
    outcome = DistributionOutcome.failure(NetworkFailure("hop 2 failed", hops=[hop]))

    notifier.distribution(4, "WINNER", outcome)

    title, description, color, fields = posted[0]
    assert color == "error"
    assert "Spin #4" in description
    assert fields[-1] == {"name": "Hop 1", "value": "sig1", "inline": False}
