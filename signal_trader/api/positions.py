"""Positions API."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from signal_trader.api.deps import get_service, require_api_key
from signal_trader.schemas.common import PositionStatus
from signal_trader.schemas.trade import ClosePositionRequest, PositionRead
from signal_trader.service import TradingService
from signal_trader.utils.errors import ExchangeNotReadyError, TradingError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/positions", tags=["positions"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=list[PositionRead])
def list_positions(service: TradingService = Depends(get_service)):
    """Open positions from the in-memory cache."""
    return service.position_manager.get_all_open_positions()


@router.get("/history")
async def position_history(
    status: PositionStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    service: TradingService = Depends(get_service),
):
    limit = min(limit, 500)
    items = await service.positions.find_many(status=status, limit=limit, offset=offset)
    return {
        "items": [PositionRead.model_validate(p) for p in items],
        "total": await service.positions.count(status=status),
        "limit": limit,
        "offset": offset,
    }


@router.post("/{symbol}/close", response_model=PositionRead)
async def close_position(symbol: str, body: ClosePositionRequest, service: TradingService = Depends(get_service)):
    """Manually close an open position."""
    try:
        closed = await service.executor.close_position(symbol.upper(), body.side)
    except ExchangeNotReadyError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except TradingError as e:
        logger.error(f"Manual close of {symbol} {body.side} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if closed is None:
        raise HTTPException(status_code=404, detail=f"No open position for {symbol.upper()} {body.side}")
    return closed
