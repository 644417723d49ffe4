from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv

from . import project_constants as pc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    token_mint: Optional[str] = None
    creator_private_key: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    history_file: Optional[str] = "spin_history.json"
    spin_interval_s: float = pc.SPIN_INTERVAL_SEC
    holder_refresh_s: float = pc.HOLDER_REFRESH_SEC
    spin_animation_s: float = pc.SPIN_ANIMATION_SEC
    keep_fraction: Decimal = pc.KEEP_FRACTION
    rpc_timeout_s: float = 30.0
    host: str = "0.0.0.0"
    port: int = 3000

    @staticmethod
    def resolve_rpc_url(rpc_url_override: str | None = None) -> str:
        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            return rpc_url_override

        # Otherwise, use RPC_URL from env if present, else build helius url from key.
        env_rpc = os.getenv("RPC_URL", "").strip()
        if env_rpc:
            return env_rpc

        helius_key = os.getenv("HELIUS_API_KEY", "").strip()
        if not helius_key:
            raise RuntimeError(
                "Missing HELIUS_API_KEY (or RPC_URL). Put it in .env or export it."
            )
        return f"https://mainnet.helius-rpc.com/?api-key={helius_key}"

    @staticmethod
    def from_env(
        rpc_url_override: str | None = None,
        timeout_override: float | None = None,
    ) -> "Settings":
        load_dotenv()

        keep_pct = _env_float("KEEP_PERCENTAGE", float(pc.KEEP_FRACTION * 100))
        history_file = os.getenv("HISTORY_FILE", "spin_history.json").strip()

        return Settings(
            rpc_url=Settings.resolve_rpc_url(rpc_url_override),
            token_mint=os.getenv("TOKEN_MINT", "").strip() or None,
            creator_private_key=os.getenv("CREATOR_PRIVATE_KEY", "").strip() or None,
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL", "").strip() or None,
            history_file=history_file or None,
            spin_interval_s=_env_float("SPIN_INTERVAL_SEC", pc.SPIN_INTERVAL_SEC),
            holder_refresh_s=_env_float("HOLDER_REFRESH_SEC", pc.HOLDER_REFRESH_SEC),
            spin_animation_s=_env_float("SPIN_ANIMATION_SEC", pc.SPIN_ANIMATION_SEC),
            keep_fraction=Decimal(str(keep_pct)) / 100,
            rpc_timeout_s=(
                timeout_override
                if timeout_override is not None
                else _env_float("RPC_TIMEOUT_SEC", 30.0)
            ),
            host=os.getenv("HOST", "0.0.0.0").strip() or "0.0.0.0",
            port=_env_int("PORT", 3000),
        )
