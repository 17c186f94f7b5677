# main.py
import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from config import Settings, load_settings
from exchange import CcxtExchange, ExchangeClient
from executor import TradeExecutor, TraderContext
from logging_config import configure_logging
from models import SignalResponse
from runner import run_trader
from stream_stub import SimulatedExchange

logger = logging.getLogger(__name__)


def build_exchange(settings: Settings) -> ExchangeClient:
    if settings.exchange == "simulated":
        return SimulatedExchange()
    return CcxtExchange(
        settings.api_key,
        settings.api_secret,
        timeframe=settings.timeframe,
        testnet=settings.testnet,
    )


# --- 1) TRADER TASK (Runs in the background) ---

async def trader_task(settings: Settings, executor: TradeExecutor):
    try:
        await run_trader(settings, executor)
    except asyncio.CancelledError:
        logger.info("Trader task cancelled.")
        raise


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    # ConfigInvalid propagates here and the server refuses to start
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_file)
    exchange = build_exchange(settings)
    context = TraderContext.from_settings(settings, exchange)
    app.state.settings = settings
    app.state.context = context
    app.state.trader_task = asyncio.create_task(trader_task(settings, TradeExecutor(context)))
    try:
        yield
    finally:
        app.state.trader_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await app.state.trader_task
        await exchange.close()


app = FastAPI(title="RSI Spot Trader", lifespan=lifespan)


def _snapshot() -> SignalResponse:
    ctx: TraderContext = app.state.context
    outcome = ctx.last_outcome
    return SignalResponse(
        symbol=ctx.symbol,
        rsi=ctx.last_rsi,
        decision=ctx.last_signal.value,
        state=(outcome.state if outcome else ctx.state).value,
        window_size=len(ctx.window),
        last_order_id=outcome.receipt.order_id if outcome and outcome.receipt else None,
        reason=outcome.reason if outcome else None,
        timestamp=outcome.timestamp if outcome else None,
    )


# --- 2) GET /signal and /health ---

@app.get("/signal", response_model=SignalResponse, tags=["Signal"])
async def get_signal(symbol: Optional[str] = None):
    """Latest RSI, decision and tick outcome for the traded symbol."""
    ctx: TraderContext = app.state.context
    if symbol is not None and symbol.upper() != ctx.symbol.upper():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Symbol {symbol} not traded.")
    return _snapshot()


@app.get("/health", tags=["Health"])
async def health():
    task = app.state.trader_task
    return {"status": "ok", "mode": app.state.settings.mode, "running": not task.done()}


# --- 3) WS /ws/signal Endpoint ---

@app.websocket("/ws/signal")
async def websocket_endpoint(websocket: WebSocket):
    """Stream the latest decision, once on connect and then on every change."""
    await websocket.accept()
    try:
        last = _snapshot()
        await websocket.send_json(last.model_dump(mode="json"))
        while True:
            current = _snapshot()
            if (current.decision, current.timestamp) != (last.decision, last.timestamp):
                await websocket.send_json(current.model_dump(mode="json"))
                last = current
            await asyncio.sleep(0.1)
    except WebSocketDisconnect:
        logger.info("Client disconnected from signal WebSocket.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
