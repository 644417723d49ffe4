from __future__ import annotations

import logging
from typing import Optional

import httpx

from .project_constants import CLAIM_PRIORITY_FEE, PUMPPORTAL_TRADE_LOCAL_URL

log = logging.getLogger(__name__)


class PumpPortalClaims:
    """
    Requests creator-fee claim transactions from the PumpPortal local-transaction API.
    The returned transaction is unsigned; the caller signs and submits it.
    """

    def __init__(
        self,
        url: str = PUMPPORTAL_TRADE_LOCAL_URL,
        timeout_s: float = 30.0,
        priority_fee: float = CLAIM_PRIORITY_FEE,
    ) -> None:
        self.url = url
        self.priority_fee = priority_fee
        self.client = httpx.AsyncClient(timeout=timeout_s)

    async def close(self) -> None:
        await self.client.aclose()

    async def request_claim(self, public_key: str) -> Optional[bytes]:
        """Serialized claim transaction, or None when there is nothing to claim."""
        resp = await self.client.post(
            self.url,
            json={
                "publicKey": public_key,
                "action": "collectCreatorFee",
                "priorityFee": self.priority_fee,
                "pool": "pump",
            },
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        if resp.status_code != 200:
            # PumpPortal answers non-200 with a text reason when nothing is claimable
            log.info("No fees to claim: %s", resp.text.strip() or resp.status_code)
            return None
        return resp.content
