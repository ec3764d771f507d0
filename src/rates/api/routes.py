"""JSON endpoints: service status, instrument inspection and manual ingestion trigger."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from rates.domain.instrument import Instrument
from rates.domain.money import Money

log = structlog.get_logger(__name__)

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _money(rate: Money | None) -> dict | None:
    if rate is None:
        return None
    return {"amount": str(rate.amount), "currency": rate.currency}


def _instrument_summary(instrument: Instrument) -> dict:
    return {
        "id": instrument.id,
        "symbol": instrument.symbol,
        "name": instrument.name,
        "current_rate": _money(instrument.current_rate),
        "last_updated": instrument.last_updated.isoformat(),
        "samples": len(instrument.history),
    }


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Scheduler state and last cycle report."""
    orchestrator = request.app.state.orchestrator
    return JSONResponse(content=_decimal_to_str(orchestrator.get_status()))


@router.get("/instruments")
async def list_instruments(request: Request) -> JSONResponse:
    """All tracked instruments with their current rate."""
    store = request.app.state.store
    instruments = await store.list_instruments()
    return JSONResponse(content=[_instrument_summary(i) for i in instruments])


@router.get("/instruments/{symbol}")
async def get_instrument(request: Request, symbol: str) -> JSONResponse:
    """One instrument with its retained history and current variation check."""
    store = request.app.state.store
    orchestrator = request.app.state.orchestrator

    instrument = await store.find_by_symbol(symbol)
    if instrument is None:
        return JSONResponse(
            status_code=404,
            content={"error": f"Unknown instrument {symbol.upper()}"},
        )

    result = orchestrator.detector.check(instrument)
    content = _instrument_summary(instrument)
    content["history"] = [
        {"timestamp": s.timestamp.isoformat(), "rate": _money(s.rate)}
        for s in instrument.history
    ]
    content["variation"] = {
        "is_significant": result.is_significant,
        "percentage_change": str(result.percentage_change),
        "oldest_rate_in_window": _money(result.oldest_rate_in_window),
        "current_rate": _money(result.current_rate),
    }
    return JSONResponse(content=content)


@router.post("/trigger")
async def trigger_cycle(request: Request) -> JSONResponse:
    """Schedule one ingestion cycle in the background."""
    orchestrator = request.app.state.orchestrator
    orchestrator.trigger()
    log.info("ingestion_triggered_via_api")
    return JSONResponse(status_code=202, content={"status": "scheduled"})
