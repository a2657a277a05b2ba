"""Signals API: webhook ingestion and signal history."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from signal_trader.api.deps import get_service, require_api_key
from signal_trader.schemas.common import SignalSource, SignalStatus
from signal_trader.schemas.signal import RawSignal, SignalRead, WebhookSignalRequest, WebhookSignalResponse
from signal_trader.service import TradingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/signals", tags=["signals"], dependencies=[Depends(require_api_key)])


@router.post("/webhook", response_model=WebhookSignalResponse)
async def receive_signal(body: WebhookSignalRequest, service: TradingService = Depends(get_service)):
    raw = RawSignal.build(
        content=body.content,
        message_id=body.message_id,
        channel_id=body.channel_id,
        user_id=body.user_id,
        image_base64=body.image_base64,
        image_mime_type=body.image_mime_type,
        source=SignalSource.WEBHOOK,
    )
    return await service.submit(raw)


@router.get("", response_model=list[SignalRead])
async def list_signals(
    status: SignalStatus | None = None,
    limit: int = 50,
    offset: int = 0,
    service: TradingService = Depends(get_service),
):
    return await service.signals.find_many(status=status, limit=min(limit, 500), offset=offset)


@router.get("/stats")
async def signal_stats(service: TradingService = Depends(get_service)):
    counts = await service.signals.status_counts()
    return {"total": sum(counts.values()), "by_status": counts}


@router.get("/{signal_id}", response_model=SignalRead)
async def get_signal(signal_id: str, service: TradingService = Depends(get_service)):
    signal = await service.signals.find_by_id(signal_id)
    if not signal:
        raise HTTPException(status_code=404, detail="Signal not found")
    return signal
