from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from tickerfeed.errors import BatchAggregationError
from tickerfeed.schemas.ticker import SnapshotErrorPayload
from tickerfeed.services.market_view import filter_records, market_summary

router = APIRouter()
snapshot_router = APIRouter()


def _dump(record) -> dict:
    return record.model_dump(by_alias=True)


@snapshot_router.get('/api/snapshot')
async def get_snapshot(request: Request):
    aggregator = request.app.state.batch_aggregator
    try:
        result = await aggregator.build()
    except BatchAggregationError as exc:
        payload = SnapshotErrorPayload(error='Failed to fetch snapshot', message=str(exc), logs=exc.trace)
        return JSONResponse(status_code=500, content=payload.model_dump())

    headers = {
        'Cache-Control': aggregator.cache_control,
        'X-Debug-Status': result.status,
    }
    if result.partial_errors:
        headers['X-Debug-Errors'] = '; '.join(result.partial_errors)

    return JSONResponse(content=[_dump(r) for r in result.records], headers=headers)


@router.get('/tickers')
def list_tickers(request: Request, quote: str | None = None, q: str | None = None):
    service = request.app.state.ticker_service
    assets = [s.strip().upper() for s in (quote or '').split(',') if s.strip()]
    rows = filter_records(service.snapshot().values(), quote_assets=assets, query=q)
    return [_dump(r) for r in rows]


@router.get('/tickers/{symbol}')
async def get_ticker(symbol: str, request: Request):
    service = request.app.state.ticker_service
    symbol = symbol.upper()

    row = service.store.get(symbol)
    if row is None or row.change_percent_1h is None or row.change_percent_4h is None:
        await service.fetch_details(symbol)
        row = service.store.get(symbol)

    if row is None:
        raise HTTPException(status_code=404, detail='TICKER_NOT_FOUND')
    return _dump(row)


@router.get('/markets/summary')
def get_market_summary(request: Request):
    service = request.app.state.ticker_service
    return market_summary(service.snapshot().values()).model_dump()


@router.get('/metrics/stream')
def stream_metrics(request: Request):
    return request.app.state.ticker_service.metrics()
