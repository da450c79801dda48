"""Entry point for the trade candle pipeline.

Two modes:
- ``serve`` (default): opens the pipeline inside a FastAPI lifespan and
  serves the JSON API with uvicorn in a single asyncio event loop.
- ``sync``: brings every configured pair up to date once and exits.
  Pairs with no cached trades get a full fetch, the rest an incremental one.

uvicorn handles SIGINT/SIGTERM in serve mode; shutdown runs the lifespan
exit, which cancels in-flight fetches and flushes the cache.
"""

import argparse
import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from tradecharts.config import AppSettings
from tradecharts.exceptions import PipelineError
from tradecharts.logging import get_logger, setup_logging
from tradecharts.models import FetchProgress, FetchStrategy
from tradecharts.pipeline import TradePipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the pipeline for the lifetime of the application."""
    logger = get_logger("tradecharts.main")
    settings: AppSettings = app.state.settings

    async with TradePipeline.from_settings(settings) as pipeline:
        app.state.pipeline = pipeline
        logger.info("lifespan_started", pairs=pipeline.pairs())
        yield
        app.state.pipeline = None

    logger.info("tradecharts_stopped")


async def sync(settings: AppSettings) -> int:
    """Update every configured pair once. Returns the number of failed pairs."""
    logger = get_logger("tradecharts.main")

    async def _progress(event: FetchProgress) -> None:
        logger.info(
            "sync_progress",
            pair=event.pair,
            strategy=event.strategy.value,
            page=event.page,
            fetched=event.fetched,
        )

    failures = 0
    async with TradePipeline.from_settings(settings) as pipeline:
        for i, pair in enumerate(settings.pairs, 1):
            strategy = (
                FetchStrategy.INCREMENTAL if pipeline.trade_count(pair) else FetchStrategy.FULL
            )
            logger.info(
                "syncing_pair",
                pair=pair,
                strategy=strategy.value,
                progress=f"{i}/{len(settings.pairs)}",
            )
            try:
                await pipeline.fetch(pair, strategy, _progress)
            except PipelineError as e:
                failures += 1
                logger.error("sync_pair_failed", pair=pair, error=str(e))
    return failures


async def serve(settings: AppSettings) -> None:
    from tradecharts.web.app import create_app

    logger = get_logger("tradecharts.main")
    app = create_app(lifespan=lifespan)
    app.state.settings = settings

    logger.info("starting_api", host=settings.api.host, port=settings.api.port)
    config = uvicorn.Config(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


async def run(mode: str) -> int:
    settings = AppSettings()
    setup_logging(settings.log_level, settings.log_format)

    if mode == "sync" or not settings.api.enabled:
        return 1 if await sync(settings) else 0
    await serve(settings)
    return 0


def main() -> None:
    """Synchronous entry point."""
    parser = argparse.ArgumentParser(prog="tradecharts")
    parser.add_argument("mode", nargs="?", choices=("serve", "sync"), default="serve")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(run(args.mode)))


if __name__ == "__main__":
    main()
