"""HTTP API and WebSocket push channel for the wheel."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .broadcast import Broadcaster
from .coordinator import AlreadySpinning, NoHoldersAvailable, SpinCoordinator
from .distribution import DistributionError, NotConfigured
from .project_constants import EXPLORER_TX_URL

log = logging.getLogger(__name__)

API_HOLDER_LIMIT = 100


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"success": False, "error": message, **extra}, status_code=status_code)


def create_app(
    coordinator: SpinCoordinator,
    broadcaster: Broadcaster,
    start_loops: bool = False,
    notifier: Any = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_loops:
            await coordinator.start()
        try:
            yield
        finally:
            if start_loops:
                await coordinator.stop()
            if notifier is not None:
                await notifier.drain()

    app = FastAPI(title="solana-wheel", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    orchestrator = coordinator.orchestrator

    @app.get("/api/health")
    async def health() -> dict:
        state = coordinator.state
        return {
            "success": True,
            "phase": state.phase.value,
            "clients": broadcaster.client_count,
            "distributionReady": orchestrator.configured,
        }

    @app.get("/api/holders")
    async def holders() -> dict:
        state = coordinator.state
        return {
            "success": True,
            "holders": [{"owner": addr, "amount": amt} for addr, amt in state.holders[:API_HOLDER_LIMIT]],
            "total": len(state.holders),
        }

    @app.get("/api/wheel-data")
    async def wheel_data() -> dict:
        state = coordinator.state
        return {
            "success": True,
            "wheelData": state.wheel.to_dict(),
            "nextSpin": coordinator.countdown(state),
            "isSpinning": state.is_spinning,
        }

    @app.get("/api/history")
    async def history(limit: int = Query(10, ge=1)) -> dict:
        return {"success": True, "history": coordinator.history(min(limit, coordinator.ledger.capacity))}

    @app.post("/api/spin")
    async def spin() -> Any:
        try:
            result = await coordinator.spin(manual=True)
        except (AlreadySpinning, NoHoldersAvailable) as e:
            return _error(400, str(e))
        return {"success": True, **result.to_dict()}

    @app.get("/api/status")
    async def status() -> dict:
        state = coordinator.state
        return {
            "success": True,
            "tokenMint": coordinator.token_mint,
            "totalHolders": len(state.holders),
            "totalSupply": state.wheel.total_supply,
            "lastSpinTime": datetime.fromtimestamp(state.last_spin_time, timezone.utc).isoformat(),
            "nextSpin": coordinator.countdown(state),
            "isSpinning": state.is_spinning,
            "balance": float(state.balance) if state.balance is not None else None,
            "operatorAddress": orchestrator.operator_address,
            "totalDistributed": float(coordinator.ledger.cumulative_total),
            "spinCount": coordinator.ledger.spin_count,
        }

    @app.get("/api/balance")
    async def balance() -> Any:
        try:
            value = await orchestrator.balance()
        except NotConfigured as e:
            return _error(503, str(e))
        except DistributionError as e:
            return _error(502, str(e))
        return {"success": True, "balance": float(value), "address": orchestrator.operator_address}

    @app.post("/api/claim-fees")
    async def claim_fees() -> Any:
        try:
            signature = await orchestrator.claim_fees()
        except NotConfigured as e:
            return _error(503, str(e))
        except DistributionError as e:
            log.warning("Manual fee claim failed: %s", e)
            return _error(502, str(e), errorCode=type(e).__name__)

        if notifier is not None:
            notifier.fees_claimed(signature)
        new_balance = await coordinator.refresh_balance()
        return {
            "success": True,
            "claimed": signature is not None,
            "signature": signature,
            "txUrl": EXPLORER_TX_URL.format(signature=signature) if signature else None,
            "balance": float(new_balance) if new_balance is not None else None,
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        await broadcaster.connect(websocket, coordinator.snapshot())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.disconnect(websocket)

    return app
