"""Trading loops: periodic polling or a live candle stream.

Both loops own the ``TraderContext`` exclusively. In streaming mode the feed
task only hands final closes to an ``asyncio.Queue``; the single consumer takes
one event at a time and finishes its tick (order included) before taking the
next, so the window is never mutated mid-evaluation.
"""

import asyncio
import contextlib
import logging
from typing import List, Optional

from config import Settings
from errors import UpstreamUnavailable
from executor import TradeExecutor
from models import ClosedCandle, TickOutcome

logger = logging.getLogger(__name__)

# Queued by the feed after a dropped stream: rebuild the window from history.
RESEED = None


async def run_polling(executor: TradeExecutor, interval: float, max_ticks: Optional[int] = None) -> List[TickOutcome]:
    """Fetch, compute, decide and execute every ``interval`` seconds."""
    outcomes: List[TickOutcome] = []
    while max_ticks is None or len(outcomes) < max_ticks:
        outcomes.append(await executor.run_tick(refresh=True))
        if max_ticks is not None and len(outcomes) >= max_ticks:
            break
        await asyncio.sleep(interval)
    return outcomes


async def _seed(executor: TradeExecutor) -> None:
    try:
        # the open candle arrives later from the stream as a final close
        await executor.refresh_from_history(closed_only=True)
    except UpstreamUnavailable as exc:
        # the window stays cold and ticks skip until enough finals arrive
        logger.error("Historical warm-up failed: %s", exc)
    else:
        logger.info("Window seeded with %d closes", len(executor.ctx.window))


async def _feed(executor: TradeExecutor, timeframe: str, queue: "asyncio.Queue[Optional[ClosedCandle]]",
                reconnect_delay: float) -> None:
    ctx = executor.ctx
    while True:
        try:
            async for candle in ctx.exchange.subscribe_closes(ctx.symbol, timeframe):
                if candle.is_final:
                    await queue.put(candle)
        except UpstreamUnavailable as exc:
            logger.error("Candle stream for %s dropped: %s", ctx.symbol, exc)
        except Exception:
            logger.exception("Candle stream for %s crashed", ctx.symbol)
        else:
            logger.warning("Candle stream for %s ended", ctx.symbol)
        await asyncio.sleep(reconnect_delay)
        await queue.put(RESEED)


async def handle_candle(executor: TradeExecutor, candle: ClosedCandle) -> Optional[TickOutcome]:
    try:
        executor.on_closed_price(candle.price)
    except ValueError as exc:
        logger.error("Ignoring close for %s: %s", candle.symbol, exc)
        return None
    return await executor.run_tick(refresh=False)


async def run_streaming(executor: TradeExecutor, timeframe: str, max_events: Optional[int] = None,
                        reconnect_delay: float = 5.0) -> List[TickOutcome]:
    """Seed from history, then evaluate once per closed candle."""
    await _seed(executor)
    queue: "asyncio.Queue[Optional[ClosedCandle]]" = asyncio.Queue()
    feed = asyncio.create_task(_feed(executor, timeframe, queue, reconnect_delay))
    outcomes: List[TickOutcome] = []
    handled = 0
    try:
        while max_events is None or handled < max_events:
            candle = await queue.get()
            if candle is RESEED:
                await _seed(executor)
                continue
            handled += 1
            outcome = await handle_candle(executor, candle)
            if outcome is not None:
                outcomes.append(outcome)
    finally:
        feed.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await feed
    return outcomes


async def run_trader(settings: Settings, executor: TradeExecutor) -> None:
    logger.info(
        "Starting %s trader for %s (RSI%d, buy<=%.1f, sell>=%.1f)",
        settings.mode,
        settings.symbol,
        settings.rsi_period,
        settings.oversold,
        settings.overbought,
    )
    if settings.mode == "streaming":
        await run_streaming(executor, settings.timeframe)
    else:
        await run_polling(executor, settings.poll_interval)
