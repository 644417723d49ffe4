from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from .broadcast import Broadcaster
from .claims import PumpPortalClaims
from .config import Settings
from .coordinator import SpinCoordinator
from .distribution import DistributionError, DistributionOrchestrator, PayoutPolicy
from .holders import build_segments, detect_created_token, fetch_holders, to_tokens
from .ledger import HistoryLedger, JsonFileStore, MemoryStore
from .notify import DiscordNotifier
from .project_constants import EXPLORER_TX_URL, TOKEN_MINT
from .rpc import RpcClient
from .wallet import SolanaNetwork, load_keypair


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


@dataclass
class Services:
    settings: Settings
    rpc: RpcClient
    claims: PumpPortalClaims
    orchestrator: DistributionOrchestrator
    notifier: DiscordNotifier
    token_mint: str

    async def close(self) -> None:
        await self.rpc.close()
        await self.claims.close()


async def build_services(settings: Settings) -> Services:
    log = logging.getLogger("setup")

    rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
    claims = PumpPortalClaims(timeout_s=settings.rpc_timeout_s)
    notifier = DiscordNotifier(settings.discord_webhook_url)

    signer = None
    if settings.creator_private_key:
        try:
            signer = load_keypair(settings.creator_private_key)
            log.info("Creator wallet: %s", signer.pubkey())
        except ValueError as e:
            log.error("CREATOR_PRIVATE_KEY unusable (%s); distribution disabled", e)
    else:
        log.warning("No CREATOR_PRIVATE_KEY; spins will run without payouts")

    orchestrator = DistributionOrchestrator(
        network=SolanaNetwork(rpc),
        claims=claims,
        signer=signer,
        policy=PayoutPolicy(keep_fraction=settings.keep_fraction),
    )

    token_mint = settings.token_mint
    if not token_mint and signer is not None:
        try:
            token = await detect_created_token(rpc, str(signer.pubkey()))
        except Exception:
            await rpc.close()
            await claims.close()
            raise
        token_mint = token["mint"]
        log.info("Detected token %s (%s): %s", token["name"], token["symbol"], token_mint)
        notifier.token_detected(token_mint, token["name"], token["symbol"])

    return Services(
        settings=settings,
        rpc=rpc,
        claims=claims,
        orchestrator=orchestrator,
        notifier=notifier,
        token_mint=token_mint or TOKEN_MINT,
    )


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(rpc_url_override=args.rpc_url, timeout_override=args.timeout)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    settings = _settings(args)
    log = logging.getLogger("serve")

    async def run() -> None:
        services = await build_services(settings)
        store = JsonFileStore(settings.history_file) if settings.history_file else MemoryStore()
        broadcaster = Broadcaster()
        coordinator = SpinCoordinator(
            token_mint=services.token_mint,
            ledger=HistoryLedger(store),
            orchestrator=services.orchestrator,
            broadcaster=broadcaster,
            holder_source=lambda: fetch_holders(services.rpc, services.token_mint),
            notifier=services.notifier,
            spin_interval_s=settings.spin_interval_s,
            holder_refresh_s=settings.holder_refresh_s,
            animation_delay_s=settings.spin_animation_s,
        )
        app = create_app(coordinator, broadcaster, start_loops=True, notifier=services.notifier)

        port = args.port or settings.port
        log.info("Token mint    : %s", services.token_mint)
        log.info("Spin interval : %ss", settings.spin_interval_s)
        log.info("Listening on  : http://%s:%d", settings.host, port)
        services.notifier.server_start(port, services.token_mint)

        server = uvicorn.Server(uvicorn.Config(app, host=settings.host, port=port, log_level="info"))
        try:
            await server.serve()
        finally:
            await services.close()

    asyncio.run(run())
    return 0


def cmd_holders(args: argparse.Namespace) -> int:
    settings = _settings(args)
    mint = args.mint or settings.token_mint or TOKEN_MINT

    async def run() -> None:
        rpc = RpcClient(settings.rpc_url, timeout_s=settings.rpc_timeout_s)
        try:
            holders = await fetch_holders(rpc, mint)
        finally:
            await rpc.close()

        wheel = build_segments(holders)
        print("========================================")
        print("🎡 WHEEL SEGMENTS")
        print("========================================")
        print(f"Mint          : {mint}")
        print(f"Holders       : {len(holders)}")
        print(f"On the wheel  : {len(wheel.segments)}")
        print(f"Eligible supply: {to_tokens(wheel.total_supply)}")
        print("----------------------------------------")
        for s in wheel.segments[: args.top]:
            print(f"{s.index + 1:>4}. {s.address:<44} {to_tokens(s.amount):>16} {s.percentage:7.3f}%")

    asyncio.run(run())
    return 0


def cmd_balance(args: argparse.Namespace) -> int:
    settings = _settings(args)

    async def run() -> int:
        services = await build_services(settings)
        try:
            balance = await services.orchestrator.balance()
        except DistributionError as e:
            print(f"❌ {e}")
            return 1
        finally:
            await services.close()
        print(f"Wallet  : {services.orchestrator.operator_address}")
        print(f"Balance : {balance} SOL")
        return 0

    return asyncio.run(run())


def cmd_claim(args: argparse.Namespace) -> int:
    settings = _settings(args)

    async def run() -> int:
        services = await build_services(settings)
        try:
            signature = await services.orchestrator.claim_fees()
            balance = await services.orchestrator.balance()
        except DistributionError as e:
            print(f"❌ Claim failed: {e}")
            return 1
        finally:
            await services.close()
        if signature:
            print(f"✅ Fees claimed: {EXPLORER_TX_URL.format(signature=signature)}")
        else:
            print("No fees available to claim.")
        print(f"Balance : {balance} SOL")
        return 0

    return asyncio.run(run())


def cmd_send(args: argparse.Namespace) -> int:
    settings = _settings(args)
    amount = Decimal(args.amount)

    async def run() -> int:
        services = await build_services(settings)
        orchestrator = services.orchestrator
        try:
            if args.hops:
                hops = await orchestrator.transfer_with_hops(args.to, amount)
                signature = hops[-1].signature
                for n, hop in enumerate(hops, 1):
                    print(f"Hop {n}: {hop.source} -> {hop.destination} {hop.amount} SOL ({hop.signature})")
            else:
                signature = await orchestrator.transfer_direct(args.to, amount)
        except DistributionError as e:
            print(f"❌ Transfer failed ({type(e).__name__}): {e}")
            for hop in getattr(e, "hops", []):
                print(f"   confirmed before failure: {hop.signature}")
            return 1
        finally:
            await services.close()
        print(f"✅ Sent: {EXPLORER_TX_URL.format(signature=signature)}")
        return 0

    return asyncio.run(run())


def cmd_history(args: argparse.Namespace) -> int:
    load_dotenv()
    path: Optional[str] = args.file or os.getenv("HISTORY_FILE", "spin_history.json").strip() or None
    ledger = HistoryLedger(JsonFileStore(path) if path else MemoryStore())
    if args.json:
        print(json.dumps([r.to_dict() for r in ledger.recent(args.limit)], indent=2))
        return 0

    print(f"Spins recorded    : {ledger.spin_count}")
    print(f"Total distributed : {ledger.cumulative_total} SOL")
    print("----------------------------------------")
    for r in ledger.recent(args.limit):
        paid = f"{r.distribution} SOL" if r.distribution is not None else "-"
        print(f"#{r.id:<5} {r.timestamp.isoformat()}  {r.winner.address:<44} {paid}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="solana-wheel",
        description="Token-holder prize wheel with creator-fee payouts.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=None, help="RPC timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("serve", help="Run the wheel server (HTTP API + WebSocket).")
    s.add_argument("--port", type=int, default=None, help="Listen port (else PORT env).")
    s.set_defaults(func=cmd_serve)

    h = sub.add_parser("holders", help="Fetch holders and print the wheel segments.")
    h.add_argument("--mint", default=None, help="Token mint (else TOKEN_MINT env).")
    h.add_argument("--top", type=int, default=25, help="Segments to print.")
    h.set_defaults(func=cmd_holders)

    b = sub.add_parser("balance", help="Show the creator wallet balance.")
    b.set_defaults(func=cmd_balance)

    c = sub.add_parser("claim", help="Claim creator fees without distributing them.")
    c.set_defaults(func=cmd_claim)

    t = sub.add_parser("send", help="Send SOL from the creator wallet.")
    t.add_argument("--to", required=True, help="Recipient address.")
    t.add_argument("--amount", required=True, help="Amount in SOL.")
    t.add_argument("--hops", action="store_true", help="Route through two hop wallets.")
    t.set_defaults(func=cmd_send)

    hist = sub.add_parser("history", help="Print recorded spins.")
    hist.add_argument("--file", default=None, help="History file (else HISTORY_FILE env).")
    hist.add_argument("--limit", type=int, default=10)
    hist.add_argument("--json", action="store_true", help="Print records as JSON.")
    hist.set_defaults(func=cmd_history)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
