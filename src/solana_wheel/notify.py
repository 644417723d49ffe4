from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import httpx

log = logging.getLogger(__name__)

COLORS = {
    "success": 0x00FF00,
    "error": 0xFF0000,
    "warning": 0xFFFF00,
    "info": 0x00FFFF,
    "spin": 0xFFD700,
    "money": 0x00C853,
}


def _field(name: str, value: Any, inline: bool = True) -> Dict[str, Any]:
    return {"name": name, "value": str(value), "inline": inline}


class DiscordNotifier:
    """
    Posts embeds to a Discord webhook. Every send runs as a background task
    and failures are only logged; callers never wait on or see them.
    """

    def __init__(self, webhook_url: Optional[str], timeout_s: float = 10.0) -> None:
        self.webhook_url = webhook_url
        self.timeout_s = timeout_s
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(
        self,
        title: str,
        description: str,
        color: str = "info",
        fields: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        if not self.webhook_url:
            return
        embed = {
            "title": title,
            "description": description,
            "color": COLORS.get(color, COLORS["info"]),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "fields": fields or [],
            "footer": {"text": "$WHEEL Server"},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                resp = await client.post(self.webhook_url, json={"embeds": [embed]})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            log.debug("Discord webhook failed: %s", e)

    def post(self, title: str, description: str, color: str = "info", fields=None) -> None:
        if not self.enabled:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.send(title, description, color, fields))
        except RuntimeError:
            log.debug("No running loop; dropped notification %r", title)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Events

    def server_start(self, port: int, token_mint: Optional[str]) -> None:
        self.post(
            "🚀 Server Started",
            "$WHEEL server is now running!",
            "success",
            [_field("Port", port), _field("Token", f"`{token_mint}`" if token_mint else "Auto-detecting...")],
        )

    def token_detected(self, mint: str, name: str, symbol: str) -> None:
        self.post(
            "🪙 Token Auto-Detected",
            "Found token created by wallet",
            "success",
            [_field("Name", name), _field("Symbol", symbol), _field("Mint", f"`{mint}`", inline=False)],
        )

    def spin_result(self, spin_id: int, address: str, percentage: float, holders: int) -> None:
        self.post(
            "🎡 Wheel Spun",
            f"Spin #{spin_id} landed on `{address}`",
            "spin",
            [_field("Chance", f"{percentage:.2f}%"), _field("Holders", holders)],
        )

    def distribution(self, spin_id: int, address: str, outcome: Any) -> None:
        if outcome.success:
            self.post(
                "💸 Prize Sent",
                f"Spin #{spin_id} winner `{address}` paid",
                "money",
                [
                    _field("Amount", f"{outcome.distributed} SOL"),
                    _field("Claimed", f"{outcome.claimed} SOL"),
                    _field("From fees", "yes" if outcome.funded_by_fees else "no"),
                    _field("Tx", outcome.proof_url or "-", inline=False),
                ],
            )
        else:
            self.post(
                "❌ Distribution Failed",
                f"Spin #{spin_id} winner `{address}` was not paid",
                "warning" if outcome.kind == "no_funds" else "error",
                [_field("Reason", outcome.reason or outcome.kind, inline=False)]
                + [_field(f"Hop {i}", h.signature, inline=False) for i, h in enumerate(outcome.hops, 1)],
            )

    def fees_claimed(self, signature: Optional[str]) -> None:
        self.post(
            "💰 Fee Claim",
            f"Claim transaction `{signature}`" if signature else "No fees available to claim",
            "money" if signature else "info",
        )

    def error(self, context: str, message: str) -> None:
        self.post(f"⚠️ {context}", message, "error")
