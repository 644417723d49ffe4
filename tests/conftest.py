from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest
from solders.keypair import Keypair

from solana_wheel.rpc import RpcError


def new_address() -> str:
    return str(Keypair().pubkey())


class FakeNetwork:
    """Stands in for SolanaNetwork; balances are served in order, the last one repeating."""

    def __init__(
        self,
        balances: Optional[List[int]] = None,
        fail_send_at: Optional[int] = None,
        fail_confirm_at: Optional[int] = None,
        balance_error: Optional[Exception] = None,
    ) -> None:
        self.balances = list(balances or [1_000_000_000])
        self.fail_send_at = fail_send_at
        self.fail_confirm_at = fail_confirm_at
        self.balance_error = balance_error
        self.sent: List[Dict[str, Any]] = []
        self.submitted: List[bytes] = []
        self.calls = 0

    async def get_balance(self, address: str) -> int:
        self.calls += 1
        if self.balance_error is not None:
            raise self.balance_error
        if len(self.balances) > 1:
            return self.balances.pop(0)
        return self.balances[0]

    async def send_transfer(self, sender: Keypair, recipient: str, lamports: int) -> str:
        self.calls += 1
        n = len(self.sent) + 1
        if n == self.fail_send_at:
            raise RpcError(f"send {n} rejected")
        signature = f"sig{n}"
        self.sent.append(
            {"source": str(sender.pubkey()), "destination": recipient, "lamports": lamports, "signature": signature}
        )
        return signature

    async def confirm(self, signature: str) -> None:
        self.calls += 1
        if signature == f"sig{self.fail_confirm_at}":
            raise asyncio.TimeoutError(f"{signature} not confirmed")

    async def submit_and_confirm(self, raw_tx: bytes) -> str:
        self.calls += 1
        self.submitted.append(raw_tx)
        return f"claim{len(self.submitted)}"


class FakeClaims:
    def __init__(self, raw: Optional[bytes] = None, error: Optional[Exception] = None) -> None:
        self.raw = raw
        self.error = error
        self.requests: List[str] = []

    async def request_claim(self, public_key: str) -> Optional[bytes]:
        self.requests.append(public_key)
        if self.error is not None:
            raise self.error
        return self.raw


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []
        self.client_count = 0

    async def publish(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.events.append({"type": event_type, "data": data})

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]

    def last(self, event_type: str) -> Dict[str, Any]:
        return [e for e in self.events if e["type"] == event_type][-1]["data"]


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FixedRng:
    """uniform() and random() return preset values."""

    def __init__(self, uniform_value: float = 0.0, random_value: float = 0.5) -> None:
        self.uniform_value = uniform_value
        self.random_value = random_value

    def uniform(self, a: float, b: float) -> float:
        return self.uniform_value

    def random(self) -> float:
        return self.random_value


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def connect_error() -> httpx.ConnectError:
    return httpx.ConnectError("connection refused")
