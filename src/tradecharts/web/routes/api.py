"""JSON API endpoints exposing the trade pipeline to the UI layer."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from tradecharts.analysis.candles import ONE_HOUR_MS, simple_moving_average
from tradecharts.analysis.filters import FilterKind, FilterPolicy
from tradecharts.analysis.periods import DEFAULT_PERIOD, PERIODS
from tradecharts.exceptions import FetchInProgressError
from tradecharts.models import Candle, FetchStrategy
from tradecharts.pipeline import TradePipeline

log = structlog.get_logger(__name__)

router = APIRouter()


def _pipeline(request: Request) -> TradePipeline:
    return request.app.state.pipeline


def _pair_payload(pipeline: TradePipeline, pair: str) -> dict:
    return {
        "pair": pair,
        "trades": pipeline.trade_count(pair),
        "is_fetching": pipeline.is_fetching(pair),
        "fetch_progress": pipeline.fetch_progress(pair),
        "needs_update": pipeline.needs_update(pair),
        **pipeline.state(pair).to_dict(),
    }


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Cache and name-resolution status."""
    pipeline = _pipeline(request)
    return JSONResponse(
        content={
            "cache_loaded": pipeline.cache_loaded,
            "show_stale_warning": pipeline.show_stale_warning,
            "names_loading": pipeline.names_loading,
            "names_remaining": pipeline.names_remaining,
        }
    )


@router.get("/pairs")
async def get_pairs(request: Request) -> JSONResponse:
    """Every known pair with its trade count and fetch state."""
    pipeline = _pipeline(request)
    return JSONResponse(content=[_pair_payload(pipeline, p) for p in pipeline.pairs()])


@router.get("/pairs/{pair}/state")
async def get_pair_state(pair: str, request: Request) -> JSONResponse:
    return JSONResponse(content=_pair_payload(_pipeline(request), pair))


@router.post("/pairs/{pair}/fetch/{strategy}")
async def start_fetch(pair: str, strategy: FetchStrategy, request: Request) -> JSONResponse:
    """Start a fetch in the background. 409 if one is already running for the pair."""
    pipeline = _pipeline(request)
    try:
        pipeline.start_fetch(pair, strategy)
    except FetchInProgressError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    log.info("fetch_requested", pair=pair, strategy=strategy.value)
    return JSONResponse(status_code=202, content={"pair": pair, "strategy": strategy.value})


@router.post("/pairs/{pair}/cancel")
async def cancel_fetch(pair: str, request: Request) -> JSONResponse:
    cancelled = _pipeline(request).cancel_fetch(pair)
    return JSONResponse(content={"pair": pair, "cancelled": cancelled})


def _filter_override(
    pipeline: TradePipeline,
    policy: FilterKind | None,
    lower: float | None,
    upper: float | None,
    tolerance: float | None,
) -> FilterPolicy | None:
    """Overlay request parameters on the configured default policy, one by one."""
    if policy is None and lower is None and upper is None and tolerance is None:
        return None
    base = pipeline.default_filter
    return FilterPolicy(
        kind=policy or base.kind,
        lower=lower if lower is not None else base.lower,
        upper=upper if upper is not None else base.upper,
        min_samples=base.min_samples,
        tolerance=tolerance if tolerance is not None else base.tolerance,
    )


def _period_candles(
    request: Request,
    pair: str,
    interval: int,
    period: str,
    filter_policy: FilterPolicy | None,
) -> list[Candle] | JSONResponse:
    if period not in PERIODS:
        return JSONResponse(
            status_code=400,
            content={"error": f"Unknown period {period!r}", "periods": list(PERIODS)},
        )
    try:
        return _pipeline(request).get_period_candles(pair, period, interval, filter_policy)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})


@router.get("/pairs/{pair}/candles")
async def get_candles(
    pair: str,
    request: Request,
    interval: int = Query(ONE_HOUR_MS, gt=0),
    period: str = DEFAULT_PERIOD,
    policy: FilterKind | None = None,
    lower: float | None = Query(None, ge=0, le=1),
    upper: float | None = Query(None, ge=0, le=1),
    tolerance: float | None = Query(None, ge=0),
) -> JSONResponse:
    """OHLCV candles for a pair over a named period.

    Filter parameters override the configured default policy one by one.
    """
    filter_policy = _filter_override(_pipeline(request), policy, lower, upper, tolerance)
    candles = _period_candles(request, pair, interval, period, filter_policy)
    if isinstance(candles, JSONResponse):
        return candles
    return JSONResponse(content=[c.to_dict() for c in candles])


@router.get("/pairs/{pair}/sma")
async def get_sma(
    pair: str,
    request: Request,
    window: int = Query(7, ge=1),
    interval: int = Query(ONE_HOUR_MS, gt=0),
    period: str = DEFAULT_PERIOD,
    policy: FilterKind | None = None,
    lower: float | None = Query(None, ge=0, le=1),
    upper: float | None = Query(None, ge=0, le=1),
    tolerance: float | None = Query(None, ge=0),
) -> JSONResponse:
    """Moving average of candle closes, drawn over the same candles as /candles."""
    filter_policy = _filter_override(_pipeline(request), policy, lower, upper, tolerance)
    candles = _period_candles(request, pair, interval, period, filter_policy)
    if isinstance(candles, JSONResponse):
        return candles
    points = simple_moving_average(candles, window)
    return JSONResponse(
        content=[{"bucket_start": start, "value": str(value)} for start, value in points]
    )


@router.get("/pairs/{pair}/summary")
async def get_summary(pair: str, request: Request) -> JSONResponse:
    return JSONResponse(content=_pipeline(request).get_summary(pair).to_dict())


@router.get("/history")
async def get_history(
    request: Request,
    page: int = Query(1, ge=1),
    per_page: int = Query(100, ge=1, le=1000),
) -> JSONResponse:
    """Merged trade history across all pairs, newest first."""
    pipeline = _pipeline(request)
    rows, total_pages = pipeline.get_history(page, per_page)
    names = pipeline.display_names()
    trades = []
    for pair, trade in rows:
        trades.append({
            "pair": pair,
            **trade.to_wire(),
            "buyerName": names.get(trade.buyer_receiving_address or ""),
            "sellerName": names.get(trade.seller_address or ""),
        })
    return JSONResponse(
        content={"page": page, "total_pages": total_pages, "trades": trades}
    )


@router.get("/names")
async def resolve_names(
    request: Request,
    address: list[str] = Query([]),
) -> JSONResponse:
    """Resolve display names for the given addresses (cached forever once known)."""
    names = await _pipeline(request).resolve_names(address)
    return JSONResponse(content=names)


@router.delete("/cache")
async def clear_cache(request: Request) -> JSONResponse:
    await _pipeline(request).clear_cache()
    log.info("cache_clear_requested")
    return JSONResponse(content={"cleared": True})
