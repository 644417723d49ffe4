from __future__ import annotations

import asyncio
import logging
import time
from decimal import ROUND_DOWN, Decimal

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from .project_constants import CONFIRM_TIMEOUT_SEC, LAMPORTS_PER_SOL
from .rpc import RpcClient, RpcError

log = logging.getLogger(__name__)

FINAL_STATUSES = ("confirmed", "finalized")


def is_valid_address(address: str) -> bool:
    """A Solana address is the base58 encoding of 32 bytes."""
    if not address or not isinstance(address, str):
        return False
    try:
        return len(base58.b58decode(address)) == 32
    except ValueError:
        return False


def load_keypair(secret: str) -> Keypair:
    """Keypair from a base58 secret key (the 64-byte export format wallets use)."""
    raw = base58.b58decode(secret.strip())
    if len(raw) != 64:
        raise ValueError(f"Secret key must decode to 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


def to_lamports(sol: Decimal) -> int:
    return int((sol * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))


def to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / LAMPORTS_PER_SOL


def build_transfer(sender: Keypair, recipient: str, lamports: int, blockhash: str) -> bytes:
    ix = transfer(
        TransferParams(
            from_pubkey=sender.pubkey(),
            to_pubkey=Pubkey.from_string(recipient),
            lamports=lamports,
        )
    )
    recent = Hash.from_string(blockhash)
    msg = Message.new_with_blockhash([ix], sender.pubkey(), recent)
    return bytes(Transaction([sender], msg, recent))


def sign_versioned(raw_tx: bytes, signer: Keypair) -> bytes:
    """Signs a serialized versioned transaction produced by a third party."""
    unsigned = VersionedTransaction.from_bytes(raw_tx)
    return bytes(VersionedTransaction(unsigned.message, [signer]))


class SolanaNetwork:
    """Submits transfers and waits for them to reach confirmed commitment."""

    def __init__(
        self,
        rpc: RpcClient,
        confirm_timeout_s: float = CONFIRM_TIMEOUT_SEC,
        poll_interval_s: float = 0.5,
    ) -> None:
        self.rpc = rpc
        self.confirm_timeout_s = confirm_timeout_s
        self.poll_interval_s = poll_interval_s

    async def get_balance(self, address: str) -> int:
        return await self.rpc.get_balance(address)

    async def send_transfer(self, sender: Keypair, recipient: str, lamports: int) -> str:
        blockhash = await self.rpc.get_latest_blockhash()
        raw = build_transfer(sender, recipient, lamports, blockhash)
        return await self.rpc.send_transaction(raw)

    async def confirm(self, signature: str) -> None:
        deadline = time.monotonic() + self.confirm_timeout_s
        while True:
            status = await self.rpc.get_signature_status(signature)
            if status:
                if status.get("err") is not None:
                    raise RpcError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in FINAL_STATUSES:
                    return
            if time.monotonic() >= deadline:
                raise asyncio.TimeoutError(
                    f"Transaction {signature} not confirmed after {self.confirm_timeout_s}s"
                )
            await asyncio.sleep(self.poll_interval_s)

    async def submit_and_confirm(self, raw_tx: bytes) -> str:
        signature = await self.rpc.send_transaction(raw_tx)
        log.debug("Submitted %s, waiting for confirmation", signature)
        await self.confirm(signature)
        return signature
