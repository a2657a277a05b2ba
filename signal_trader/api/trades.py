"""Trade history API."""

from fastapi import APIRouter, Depends, HTTPException

from signal_trader.api.deps import get_service, require_api_key
from signal_trader.schemas.common import TradeStatus
from signal_trader.schemas.trade import TradeRead
from signal_trader.service import TradingService

router = APIRouter(prefix="/api/trades", tags=["trades"], dependencies=[Depends(require_api_key)])


@router.get("", response_model=list[TradeRead])
async def list_trades(
    status: TradeStatus | None = None,
    symbol: str | None = None,
    limit: int = 50,
    offset: int = 0,
    service: TradingService = Depends(get_service),
):
    return await service.trades.find_many(status=status, symbol=symbol, limit=min(limit, 500), offset=offset)


@router.get("/{trade_id}", response_model=TradeRead)
async def get_trade(trade_id: str, service: TradingService = Depends(get_service)):
    trade = await service.trades.find_by_id(trade_id)
    if not trade:
        raise HTTPException(status_code=404, detail="Trade not found")
    return trade
