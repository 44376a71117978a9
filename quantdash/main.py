"""QuantDash — application entry point.

Boots the FastAPI server and provides the CLI entry point for serving the
API, printing a one-off analysis, or watching a stock's realtime bar.
"""

import logging

from fastapi import FastAPI

from quantdash.api.routers import router

app = FastAPI(title="QuantDash API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("quantdash")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def build_services(config):
    """Create the Tushare client and every service for *config*.

    Returns ``(stock_service, market_service, stock_directory, leaderboard)``.
    """
    from quantdash.data.services import MarketDataService, StockDataService
    from quantdash.market.leaderboard import Leaderboard
    from quantdash.market.stocks import StockDirectory
    from quantdash.tushare.client import TushareClient

    client = TushareClient(config)
    directory = StockDirectory(client)
    return (
        StockDataService(client, config),
        MarketDataService(client, config),
        directory,
        Leaderboard(client, directory),
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from quantdash.analysis.models import Timeframe
    from quantdash.api.routers import configure_routers
    from quantdash.config import load_config

    parser = argparse.ArgumentParser(description="QuantDash A-share analysis")
    parser.add_argument("--env", help="Path to a .env file")
    parser.add_argument("--port", type=int, help="API port (default: API_PORT or 8080)")
    parser.add_argument("--analyze", metavar="TS_CODE", help="Print one analysis and exit")
    parser.add_argument("--watch", metavar="TS_CODE", help="Log realtime bars during trading hours")
    parser.add_argument("--search", metavar="KEYWORD", help="Print matching stocks and exit")
    parser.add_argument("--top", type=int, metavar="N", help="Print the top N leaderboard stocks and exit")
    parser.add_argument(
        "--timeframe",
        choices=[t.value for t in Timeframe],
        default=Timeframe.DAILY.value,
        help="Bar timeframe for --analyze (default: daily)",
    )
    args = parser.parse_args()

    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    stock_service, market_service, directory, leaderboard = build_services(config)

    if args.analyze:
        asyncio.run(_print_analysis(stock_service, args.analyze, Timeframe(args.timeframe)))
    elif args.watch:
        asyncio.run(_watch_realtime(stock_service, args.watch, config.realtime_interval_s))
    elif args.search is not None:
        asyncio.run(_print_search(directory, args.search))
    elif args.top:
        asyncio.run(_print_top(leaderboard, args.top))
    else:
        configure_routers(
            stock_service=stock_service,
            market_service=market_service,
            stock_directory=directory,
            leaderboard=leaderboard,
        )
        asyncio.run(_serve(args.port or config.api_port))


async def _serve(port: int) -> None:
    """Run the API server until interrupted."""
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)
    logger.info("QuantDash API available at http://localhost:%d", port)
    await server.serve()
    logger.info("QuantDash stopped.")


async def _print_analysis(stock_service, ts_code: str, timeframe) -> None:
    """Fetch bars for *ts_code* and print the analysis as JSON."""
    import json

    from quantdash.data.errors import DataFetchError

    try:
        result = await stock_service.get_analysis(ts_code, timeframe)
    except DataFetchError as exc:
        logger.error("Analysis for %s failed: %s", ts_code, exc)
        print(json.dumps({"error": exc.to_dict()}, ensure_ascii=False, indent=2))
        return

    if result.payload is None:
        logger.info("Not enough %s bars for %s to analyse yet.", timeframe.value, ts_code)
    payload = result.payload.to_dict() if result.payload is not None else None
    print(json.dumps({"ts_code": ts_code, "analysis": payload}, ensure_ascii=False, indent=2))


async def _print_search(directory, keyword: str) -> None:
    """Print directory entries matching *keyword* as JSON."""
    import json

    from quantdash.data.errors import DataFetchError

    try:
        stocks = await directory.search(keyword)
    except DataFetchError as exc:
        logger.error("Stock search failed: %s", exc)
        print(json.dumps({"error": exc.to_dict()}, ensure_ascii=False, indent=2))
        return
    print(json.dumps([s.to_dict() for s in stocks], ensure_ascii=False, indent=2))


async def _print_top(leaderboard, limit: int) -> None:
    """Build today's profiles, then print the leaderboard as JSON."""
    import json

    from quantdash.data.errors import DataFetchError

    try:
        await leaderboard.profiles.ensure()
        stocks = await leaderboard.top(limit)
    except DataFetchError as exc:
        logger.error("Leaderboard failed: %s", exc)
        print(json.dumps({"error": exc.to_dict()}, ensure_ascii=False, indent=2))
        return
    logger.info("Scored with %d history profiles.", len(leaderboard.profiles))
    print(json.dumps([s.to_dict() for s in stocks], ensure_ascii=False, indent=2))


async def _watch_realtime(stock_service, ts_code: str, interval: float) -> None:
    """Poll the realtime bar for *ts_code* until interrupted."""
    from quantdash.market.realtime import RealtimeRefresher

    def _log_bar(bar) -> None:
        logger.info(
            "%s close=%.2f high=%.2f low=%.2f vol=%.0f",
            ts_code, bar.close, bar.high, bar.low, bar.volume,
        )

    refresher = RealtimeRefresher(stock_service.get_realtime_bar, interval=interval, on_bar=_log_bar)
    refresher.start(ts_code)
    logger.info("Watching %s every %.1fs (idle outside trading hours).", ts_code, interval)
    try:
        await refresher.run()
    finally:
        refresher.stop()


if __name__ == "__main__":
    _run_cli()
