from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .project_constants import EXCLUDED_ADDRESSES, HOLDER_PAGE_SIZE, TOKEN_DECIMALS
from .rpc import RpcClient

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    index: int
    address: str
    amount: int
    percentage: float
    display_address: str
    color: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["displayAddress"] = d.pop("display_address")
        return d


@dataclass(frozen=True)
class WheelData:
    segments: Tuple[Segment, ...] = ()
    total_supply: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segments": [s.to_dict() for s in self.segments],
            "totalSupply": self.total_supply,
        }


def to_tokens(raw_amount: int) -> float:
    return round(raw_amount / (10**TOKEN_DECIMALS), 1)


def truncate_address(address: str) -> str:
    if not address or len(address) < 10:
        return address
    return f"{address[:4]}...{address[-4:]}"


def segment_color(index: int, total: int) -> str:
    hue = (index * 360 / max(total, 1)) % 360
    saturation = 70 + (index % 3) * 10
    lightness = 45 + (index % 2) * 15
    return f"hsl({hue:g}, {saturation}%, {lightness}%)"


def aggregate_token_accounts(accounts: Iterable[Dict[str, Any]]) -> List[Tuple[str, int]]:
    """Sum token-account balances per owner, drop empties, largest first."""
    balances: Dict[str, int] = defaultdict(int)
    for acc in accounts:
        owner = acc.get("owner")
        amount = int(acc.get("amount") or 0)
        if owner and amount > 0:
            balances[owner] += amount

    # Ties broken by address so the order is stable between refreshes
    return sorted(balances.items(), key=lambda x: (-x[1], x[0]))


async def fetch_holders(
    rpc: RpcClient, mint: str, page_size: int = HOLDER_PAGE_SIZE
) -> List[Tuple[str, int]]:
    accounts: List[Dict[str, Any]] = []
    cursor: Optional[str] = None
    while True:
        page, cursor = await rpc.get_token_accounts_page(mint, page_size, cursor)
        accounts.extend(page)
        log.debug("Fetched %d token accounts (total: %d)", len(page), len(accounts))
        if cursor is None:
            break

    holders = aggregate_token_accounts(accounts)
    log.info("Holders for %s: %d", mint, len(holders))
    return holders


def build_segments(
    holders: List[Tuple[str, int]],
    excluded: Set[str] | None = None,
) -> WheelData:
    """
    Turn holders (sorted largest first) into wheel segments.

    The largest holder is taken to be the bonding curve / DEX pool and never
    gets a segment, nor do known program addresses or anything in `excluded`.
    """
    if not holders:
        return WheelData()

    blocked = EXCLUDED_ADDRESSES | (excluded or set())
    eligible = [(addr, int(amt)) for addr, amt in holders[1:] if addr not in blocked and amt > 0]
    if not eligible:
        return WheelData()

    total = sum(amt for _, amt in eligible)
    segments = tuple(
        Segment(
            index=i,
            address=addr,
            amount=amt,
            percentage=amt / total * 100,
            display_address=truncate_address(addr),
            color=segment_color(i, len(eligible)),
        )
        for i, (addr, amt) in enumerate(eligible)
    )
    return WheelData(segments=segments, total_supply=total)


async def detect_created_token(rpc: RpcClient, creator: str) -> Dict[str, str]:
    """Most recent fungible token minted by `creator` (Helius DAS)."""
    assets = await rpc.get_assets_by_creator(creator)
    tokens = [
        a
        for a in assets
        if a.get("interface") in ("FungibleToken", "FungibleAsset")
        or ((a.get("content") or {}).get("metadata") or {}).get("token_standard") == "Fungible"
    ]
    if not tokens:
        raise RuntimeError(
            f"No fungible tokens found for creator {creator} ({len(assets)} assets scanned)."
        )

    meta = (tokens[0].get("content") or {}).get("metadata") or {}
    return {
        "mint": tokens[0]["id"],
        "name": meta.get("name") or "Unknown Token",
        "symbol": meta.get("symbol") or "TOKEN",
    }
