import asyncio

import pytest

from executor import TradeExecutor, TraderContext
from indicators import RSIEngine, calculate_rsi
from models import ClosedCandle, PriceWindow, TickState
from policy import OrderSizer, SignalPolicy
from runner import run_polling, run_streaming

HISTORY = [float(p) for p in range(115, 100, -1)]  # 15 falling closes


def make_executor(exchange, period=14):
	ctx = TraderContext(
		symbol="BTC/USDT",
		base_asset="BTC",
		exchange=exchange,
		window=PriceWindow(period),
		engine=RSIEngine(period),
		policy=SignalPolicy(),
		sizer=OrderSizer("0.001"),
		history_limit=len(HISTORY),
	)
	return TradeExecutor(ctx)


def candle(price, final=True):
	return ClosedCandle(symbol="BTC/USDT", ts=0.0, price=price, is_final=final)


@pytest.mark.asyncio
async def test_streaming_only_appends_final_closes(fake_exchange_factory):
	candles = [candle(150.0, final=False), candle(100.0), candle(1.0, final=False), candle(99.0)]
	exchange = fake_exchange_factory(closes=HISTORY, candles=candles)
	executor = make_executor(exchange)

	outcomes = await asyncio.wait_for(run_streaming(executor, "5m", max_events=2), timeout=5)

	assert len(outcomes) == 2
	assert executor.ctx.window.snapshot() == HISTORY[2:] + [100.0, 99.0]
	assert executor.ctx.engine.value() == calculate_rsi(HISTORY + [100.0, 99.0], 14)


@pytest.mark.asyncio
async def test_streaming_finishes_each_tick_before_next_event(fake_exchange_factory):
	finals = [100.0, 99.0, 98.0]
	exchange = fake_exchange_factory(closes=HISTORY, candles=[candle(p) for p in finals])
	executor = make_executor(exchange)
	seen = []
	exchange.on_submit = lambda: seen.append(executor.ctx.window.snapshot()[-1])

	outcomes = await asyncio.wait_for(run_streaming(executor, "5m", max_events=3), timeout=5)

	assert [o.state for o in outcomes] == [TickState.ORDER_SUBMITTED] * 3
	# every order saw exactly the close that triggered it
	assert seen == finals


@pytest.mark.asyncio
async def test_streaming_state_matches_batch_over_full_history(fake_exchange_factory):
	finals = [101.5, 103.0, 102.2, 104.9, 104.1, 106.0, 105.5]
	exchange = fake_exchange_factory(closes=HISTORY, candles=[candle(p) for p in finals])
	executor = make_executor(exchange)

	outcomes = await asyncio.wait_for(run_streaming(executor, "5m", max_events=len(finals)), timeout=5)

	expected = calculate_rsi(HISTORY + finals, 14)
	assert outcomes[-1].rsi == expected
	assert executor.ctx.last_rsi == expected


@pytest.mark.asyncio
async def test_streaming_warms_up_from_live_closes_when_history_fails(fake_exchange_factory):
	from errors import UpstreamUnavailable

	exchange = fake_exchange_factory(candles=[candle(p) for p in HISTORY])
	exchange.fetch_error = UpstreamUnavailable("down")
	executor = make_executor(exchange)

	outcomes = await asyncio.wait_for(run_streaming(executor, "5m", max_events=len(HISTORY)), timeout=5)

	assert all(o.state == TickState.SKIPPED for o in outcomes[:-1])
	assert outcomes[-1].state == TickState.ORDER_SUBMITTED


@pytest.mark.asyncio
async def test_polling_refetches_every_tick(fake_exchange_factory):
	exchange = fake_exchange_factory(closes=HISTORY)
	executor = make_executor(exchange)

	outcomes = await run_polling(executor, interval=0, max_ticks=3)

	assert len(outcomes) == 3
	fetches = [c for c in exchange.calls if c[0] == "fetch_recent_closes"]
	assert fetches == [("fetch_recent_closes", "BTC/USDT", 15)] * 3


@pytest.mark.asyncio
async def test_streaming_seed_leaves_out_the_open_candle(fake_exchange_factory):
	exchange = fake_exchange_factory(closes=HISTORY, candles=[candle(100.0)])
	executor = make_executor(exchange)

	await asyncio.wait_for(run_streaming(executor, "5m", max_events=1), timeout=5)

	assert exchange.closed_only_flags == [True]


@pytest.mark.asyncio
async def test_polling_uses_the_latest_candle_as_fetched(fake_exchange_factory):
	exchange = fake_exchange_factory(closes=HISTORY)
	executor = make_executor(exchange)

	await run_polling(executor, interval=0, max_ticks=1)

	assert exchange.closed_only_flags == [False]


@pytest.mark.asyncio
async def test_streaming_recovers_when_the_feed_crashes(fake_exchange_factory):
	exchange = fake_exchange_factory(closes=HISTORY, candles=[candle(100.0)])
	exchange.stream_errors = [TypeError("unexpected candle row")]
	executor = make_executor(exchange)

	outcomes = await asyncio.wait_for(
		run_streaming(executor, "5m", max_events=1, reconnect_delay=0), timeout=5
	)

	assert [o.state for o in outcomes] == [TickState.ORDER_SUBMITTED]
	subscribes = [c for c in exchange.calls if c[0] == "subscribe_closes"]
	fetches = [c for c in exchange.calls if c[0] == "fetch_recent_closes"]
	assert len(subscribes) == 2
	# initial warm-up plus the rebuild after the crash
	assert len(fetches) == 2
