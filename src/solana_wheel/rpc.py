from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional, Tuple

import httpx


class RpcError(RuntimeError):
    pass


class RpcClient:
    def __init__(self, rpc_url: str, timeout_s: float = 30.0) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.AsyncClient(timeout=timeout_s)

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, method: str, params: Any) -> Dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if "error" in data:
            raise RpcError(f"RPC error ({method}): {data['error']}")
        return data

    async def get_balance(self, address: str, commitment: str = "confirmed") -> int:
        """Returns the balance of an address in lamports."""
        data = await self._post("getBalance", [address, {"commitment": commitment}])
        return int(data["result"]["value"])

    async def get_latest_blockhash(self, commitment: str = "confirmed") -> str:
        data = await self._post("getLatestBlockhash", [{"commitment": commitment}])
        return data["result"]["value"]["blockhash"]

    async def send_transaction(self, raw_tx: bytes) -> str:
        """Submits a signed, serialized transaction and returns its signature."""
        data = await self._post(
            "sendTransaction",
            [
                base64.b64encode(raw_tx).decode("ascii"),
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": "confirmed",
                },
            ],
        )
        return str(data["result"])

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        data = await self._post(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        values = (data.get("result") or {}).get("value") or [None]
        return values[0]

    async def get_token_accounts_page(
        self,
        mint: str,
        limit: int,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """
        One page of the Helius DAS getTokenAccounts listing for a mint.
        Returns (token_accounts, next_cursor); next_cursor is None once the
        listing is exhausted.
        """
        params: Dict[str, Any] = {"mint": mint, "limit": limit}
        if cursor:
            params["cursor"] = cursor

        data = await self._post("getTokenAccounts", params)
        result = data.get("result") or {}
        accounts = result.get("token_accounts") or []
        next_cursor = result.get("cursor")
        if not next_cursor or len(accounts) < limit:
            next_cursor = None
        return accounts, next_cursor

    async def get_assets_by_creator(
        self, creator: str, limit: int = 100
    ) -> List[Dict[str, Any]]:
        data = await self._post(
            "getAssetsByCreator",
            {"creatorAddress": creator, "onlyVerified": False, "page": 1, "limit": limit},
        )
        return (data.get("result") or {}).get("items") or []
