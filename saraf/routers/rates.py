"""Rates router.

Endpoints:
    - GET /rates          -> aggregated snapshot; ``X-Cache`` says HIT / MISS / ERROR-FALLBACK
    - GET /rates/convert  -> amount conversion through the current snapshot
    - GET /rates/history  -> latest stored observation per symbol
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from saraf.core.errors import UnsupportedPair
from saraf.models import ConversionOut, MarketSample, RateOut
from saraf.services.rates.aggregator import CACHE_FALLBACK, RateAggregator
from saraf.db.rate_store import RateStore

router = APIRouter(prefix="/rates", tags=["rates"])


def get_aggregator(request: Request) -> RateAggregator:
    return request.app.state.services.aggregator


def get_rate_store(request: Request) -> RateStore:
    return request.app.state.services.rate_store


@router.get("", response_model=List[RateOut], summary="Current aggregated exchange rates")
def list_rates(
    response: Response,
    aggregator: RateAggregator = Depends(get_aggregator),
):
    read = aggregator.get_rates()
    response.headers["X-Cache"] = read.cache_status
    if read.cache_status == CACHE_FALLBACK:
        response.headers["Cache-Control"] = "public, max-age=60"
    else:
        response.headers["Cache-Control"] = "public, max-age=300, stale-while-revalidate=600"
    return read.payload()


@router.get("/convert", response_model=ConversionOut, summary="Convert an amount")
def convert(
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    amount: float = Query(..., gt=0),
    aggregator: RateAggregator = Depends(get_aggregator),
):
    try:
        c = aggregator.convert(from_currency, to_currency, amount)
    except UnsupportedPair as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ConversionOut(
        from_=c.from_currency, to=c.to_currency, amount=c.amount, result=c.result, rate=c.rate
    )


@router.get(
    "/history",
    response_model=List[MarketSample],
    summary="Latest stored observation per currency pair",
)
def history(
    symbol: Optional[str] = Query(None, description="Pair symbol, e.g. USDAFN"),
    store: RateStore = Depends(get_rate_store),
):
    return store.latest(symbol)
