from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from solders.keypair import Keypair

from . import project_constants as pc
from .rpc import RpcError
from .wallet import is_valid_address, sign_versioned, to_lamports, to_sol

log = logging.getLogger(__name__)

NETWORK_ERRORS = (httpx.HTTPError, RpcError, asyncio.TimeoutError)

# Non-JSON bodies or unexpected result shapes from the node
MALFORMED_RESPONSE = (ValueError, KeyError, TypeError)

ZERO = Decimal(0)


class DistributionError(RuntimeError):
    pass


class NotConfigured(DistributionError):
    pass


class ClaimUnavailable(DistributionError):
    pass


class TransferTooSmall(DistributionError):
    pass


class InvalidRecipient(DistributionError):
    pass


class NetworkFailure(DistributionError):
    def __init__(self, message: str, hops: Optional[List["HopTransfer"]] = None) -> None:
        super().__init__(message)
        self.hops = list(hops or [])


@dataclass(frozen=True)
class HopTransfer:
    source: str
    destination: str
    lamports: int
    signature: str

    @property
    def amount(self) -> Decimal:
        return to_sol(self.lamports)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.source,
            "to": self.destination,
            "amount": float(self.amount),
            "sig": self.signature,
        }


@dataclass(frozen=True)
class DistributionOutcome:
    kind: str  # "success" | "no_funds" | "failure"
    claimed: Decimal = ZERO
    distributed: Decimal = ZERO
    funded_by_fees: bool = False
    hops: Tuple[HopTransfer, ...] = ()
    claim_signature: Optional[str] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.kind == "success"

    @property
    def signature(self) -> Optional[str]:
        """Signature of the transfer that landed with the winner."""
        if self.success and self.hops:
            return self.hops[-1].signature
        return None

    @property
    def proof_url(self) -> Optional[str]:
        sig = self.signature
        return pc.EXPLORER_TX_URL.format(signature=sig) if sig else None

    @staticmethod
    def failure(error: DistributionError, claimed: Decimal = ZERO, **kw: Any) -> "DistributionOutcome":
        hops = tuple(getattr(error, "hops", ()))
        return DistributionOutcome(
            kind="failure",
            claimed=claimed,
            hops=hops,
            error_code=type(error).__name__,
            reason=str(error),
            **kw,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "status": self.kind,
            "claimed": float(self.claimed),
            "distributed": float(self.distributed),
            "fundedByFees": self.funded_by_fees,
            "claimTx": self.claim_signature,
            "transferSignature": self.signature,
            "transferTxUrl": self.proof_url,
            "hops": [h.to_dict() for h in self.hops],
            "error": self.reason,
            "errorCode": self.error_code,
        }


@dataclass(frozen=True)
class PayoutPolicy:
    keep_fraction: Decimal = pc.KEEP_FRACTION
    reserved_fees: Decimal = pc.RESERVED_HOP_FEES
    min_significant_claim: Decimal = pc.MIN_SIGNIFICANT_CLAIM
    guaranteed_minimum: Decimal = pc.GUARANTEED_MINIMUM_PAYOUT
    hop_fee_lamports: int = pc.HOP_NETWORK_FEE_LAMPORTS
    settle_delay_s: float = pc.CLAIM_SETTLE_SEC
    hop_slack_s: float = pc.HOP_SLACK_SEC

    def payout_for(self, claimed: Decimal) -> Tuple[Decimal, bool]:
        """(payout, funded_by_fees) for a claimed amount."""
        if claimed < self.min_significant_claim:
            return self.guaranteed_minimum, False
        payout = claimed * (1 - self.keep_fraction) - self.reserved_fees
        if payout < self.guaranteed_minimum:
            return self.guaranteed_minimum, False
        return payout, True


class DistributionOrchestrator:
    """
    Claims creator fees and pays the winner through two throwaway hop wallets:
    operator -> hop1 -> hop2 -> winner. Each hop waits for confirmation of the
    previous one. Nothing is retried or rolled back.
    """

    def __init__(
        self,
        network: Any,
        claims: Any,
        signer: Optional[Keypair],
        policy: Optional[PayoutPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        keypair_factory: Callable[[], Keypair] = Keypair,
    ) -> None:
        self.network = network
        self.claims = claims
        self.signer = signer
        self.policy = policy or PayoutPolicy()
        self.sleep = sleep
        self.keypair_factory = keypair_factory

    @property
    def configured(self) -> bool:
        return self.signer is not None

    @property
    def operator_address(self) -> Optional[str]:
        return str(self.signer.pubkey()) if self.signer else None

    def _require_signer(self) -> Keypair:
        if self.signer is None:
            raise NotConfigured("Service not configured (no creator key loaded)")
        return self.signer

    async def balance(self) -> Decimal:
        signer = self._require_signer()
        try:
            lamports = await self.network.get_balance(str(signer.pubkey()))
        except NETWORK_ERRORS + MALFORMED_RESPONSE as e:
            raise NetworkFailure(f"Balance lookup failed: {e}") from e
        return to_sol(lamports)

    async def claim_fees(self) -> Optional[str]:
        """Claim accrued creator fees. Returns the claim signature, or None when nothing was claimable."""
        signer = self._require_signer()
        try:
            raw = await self.claims.request_claim(str(signer.pubkey()))
        except httpx.HTTPError as e:
            raise ClaimUnavailable(f"Claim service unavailable: {e}") from e
        if raw is None:
            return None

        try:
            signed = sign_versioned(raw, signer)
        except ValueError as e:
            raise ClaimUnavailable(f"Claim service returned an unusable transaction: {e}") from e

        try:
            signature = await self.network.submit_and_confirm(signed)
        except NETWORK_ERRORS as e:
            raise NetworkFailure(f"Fee claim transaction failed: {e}") from e
        log.info("Fees claimed: %s", signature)
        return signature

    async def transfer_direct(self, recipient: str, amount: Decimal) -> str:
        signer = self._require_signer()
        if not is_valid_address(recipient):
            raise InvalidRecipient(f"Invalid winner address: {recipient!r}")
        lamports = to_lamports(amount)
        if lamports <= 0:
            raise TransferTooSmall(f"Amount too small: {amount} SOL")
        try:
            signature = await self.network.send_transfer(signer, recipient, lamports)
            await self.network.confirm(signature)
        except NETWORK_ERRORS as e:
            raise NetworkFailure(f"Transfer to {recipient} failed: {e}") from e
        log.info("Sent %s SOL to %s: %s", amount, recipient, signature)
        return signature

    async def transfer_with_hops(self, recipient: str, amount: Decimal) -> List[HopTransfer]:
        """
        Move `amount` SOL from the operator to `recipient` via two fresh hop
        wallets. Each leg pays one network fee out of the amount it carries,
        so the recipient receives amount - 3 fees.
        """
        signer = self._require_signer()
        if not is_valid_address(recipient):
            raise InvalidRecipient(f"Invalid winner address: {recipient!r}")

        fee = self.policy.hop_fee_lamports
        total = to_lamports(amount)
        if total <= 3 * fee:
            raise TransferTooSmall(
                f"{amount} SOL cannot cover {3 * fee} lamports of hop fees"
            )

        hop1, hop2 = self.keypair_factory(), self.keypair_factory()
        legs = [
            (signer, str(hop1.pubkey()), total - fee),
            (hop1, str(hop2.pubkey()), total - 2 * fee),
            (hop2, recipient, total - 3 * fee),
        ]
        log.info("Hop route: operator -> %s -> %s -> %s", legs[0][1], legs[1][1], recipient)

        done: List[HopTransfer] = []
        for n, (sender, destination, lamports) in enumerate(legs, start=1):
            if done:
                await self.sleep(self.policy.hop_slack_s)
            source = str(sender.pubkey())
            try:
                signature = await self.network.send_transfer(sender, destination, lamports)
                await self.network.confirm(signature)
            except NETWORK_ERRORS as e:
                if done:
                    log.error(
                        "Hop %d failed after %s confirmed; funds parked at %s",
                        n,
                        done[-1].signature,
                        source,
                    )
                raise NetworkFailure(f"Hop {n} ({source} -> {destination}) failed: {e}", hops=done) from e

            done.append(HopTransfer(source, destination, lamports, signature))
            log.info("Hop %d/3 confirmed: %s SOL -> %s (%s)", n, to_sol(lamports), destination, signature)
        return done

    async def distribute(self, winner_address: str) -> DistributionOutcome:
        if not self.configured:
            return DistributionOutcome.failure(NotConfigured("Service not configured"))
        if not is_valid_address(winner_address):
            return DistributionOutcome.failure(InvalidRecipient(f"Invalid winner address: {winner_address!r}"))

        try:
            before = await self.balance()
        except DistributionError as e:
            return DistributionOutcome.failure(e)

        claim_signature = None
        try:
            claim_signature = await self.claim_fees()
        except DistributionError as e:
            # Claiming is best effort; the payout falls back to the guaranteed minimum.
            log.warning("Fee claim skipped: %s", e)

        await self.sleep(self.policy.settle_delay_s)

        try:
            after = await self.balance()
        except DistributionError as e:
            return DistributionOutcome.failure(e, claim_signature=claim_signature)

        claimed = max(after - before, ZERO)
        payout, funded_by_fees = self.policy.payout_for(claimed)
        if not funded_by_fees:
            log.info("Claimed %s SOL; paying guaranteed minimum %s SOL from operator balance", claimed, payout)

        if to_lamports(after) < to_lamports(payout):
            log.warning("Operator balance %s SOL cannot cover payout %s SOL", after, payout)
            return DistributionOutcome(
                kind="no_funds",
                claimed=claimed,
                claim_signature=claim_signature,
                reason=f"Operator balance {after} SOL below payout {payout} SOL",
            )

        try:
            hops = await self.transfer_with_hops(winner_address, payout)
        except DistributionError as e:
            return DistributionOutcome.failure(e, claimed=claimed, claim_signature=claim_signature)

        distributed = hops[-1].amount
        log.info("Distributed %s SOL to %s (claimed %s SOL)", distributed, winner_address, claimed)
        return DistributionOutcome(
            kind="success",
            claimed=claimed,
            distributed=distributed,
            funded_by_fees=funded_by_fees,
            hops=tuple(hops),
            claim_signature=claim_signature,
        )
