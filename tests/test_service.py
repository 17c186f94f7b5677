"""Async endpoint tests for the trader status service.

Covers:
- GET /signal returns the latest RSI/decision snapshot.
- GET /health reports the running trader task.
- WS /ws/signal sends a message containing the 'decision' field.
- A bad configuration stops the service from starting.

The service runs against the simulated exchange, so no network is needed.
We use httpx.AsyncClient for the HTTP test and FastAPI TestClient for WebSocket.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from errors import ConfigInvalid
from main import app


@pytest.fixture(autouse=True)
def simulated_env(monkeypatch):
	monkeypatch.setenv("TRADER_EXCHANGE", "simulated")
	monkeypatch.setenv("TRADER_MODE", "polling")
	monkeypatch.setenv("TRADER_SYMBOL", "BTC/USDT")
	monkeypatch.setenv("TRADER_OVERSOLD", "30")
	monkeypatch.setenv("TRADER_OVERBOUGHT", "69")
	monkeypatch.delenv("LOG_FILE", raising=False)


@pytest.mark.asyncio
async def test_get_signal_endpoint_returns_structure():
	# Manually run lifespan to start background tasks for AsyncClient usage
	async with app.router.lifespan_context(app):
		transport = ASGITransport(app=app)
		async with AsyncClient(transport=transport, base_url="http://test") as client:
			await asyncio.sleep(0.3)
			resp = await client.get("/signal", params={"symbol": "BTC/USDT"})
			assert resp.status_code == 200, resp.text
			data = resp.json()
			assert {"symbol", "rsi", "decision", "state", "window_size"}.issubset(data.keys())
			assert data["symbol"] == "BTC/USDT"
			assert 0.0 <= float(data["rsi"]) <= 100.0
			assert data["decision"] in {"BUY", "SELL", "HOLD"}
			assert data["state"] in {"SKIPPED", "ORDER_SUBMITTED", "ORDER_FAILED"}
			assert data["window_size"] == 15

			health = await client.get("/health")
			assert health.json() == {"status": "ok", "mode": "polling", "running": True}


@pytest.mark.asyncio
async def test_get_signal_unknown_symbol_is_404():
	async with app.router.lifespan_context(app):
		transport = ASGITransport(app=app)
		async with AsyncClient(transport=transport, base_url="http://test") as client:
			resp = await client.get("/signal", params={"symbol": "ETH/USDT"})
			assert resp.status_code == 404


def test_websocket_signal_sends_decision_message():
	with TestClient(app) as client:
		# Let the trader run its first tick
		time.sleep(0.2)
		with client.websocket_connect("/ws/signal") as ws:
			message = ws.receive_json()
			assert message["decision"] in {"BUY", "SELL", "HOLD"}
			assert message.get("symbol") == "BTC/USDT"


def test_invalid_thresholds_refuse_to_start(monkeypatch):
	monkeypatch.setenv("TRADER_OVERSOLD", "80")
	with pytest.raises(ConfigInvalid):
		with TestClient(app):
			pass


@pytest.mark.asyncio
async def test_lifespan_stops_trader_on_shutdown():
	assert app.router.on_startup == [] and app.router.on_shutdown == []
	async with app.router.lifespan_context(app):
		task = app.state.trader_task
		await asyncio.sleep(0.05)
		assert not task.done()
	assert task.cancelled()
