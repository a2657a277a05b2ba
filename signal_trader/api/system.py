"""System API: health, status, processing controls and queue inspection."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from signal_trader.api.deps import get_service, require_api_key
from signal_trader.service import TradingService

router = APIRouter(prefix="/api/system", tags=["system"])


class ConfidenceThresholdRequest(BaseModel):
    threshold: float = Field(ge=0, le=1)


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/status", dependencies=[Depends(require_api_key)])
async def system_status(service: TradingService = Depends(get_service)):
    from signal_trader.engine.scheduler import get_scheduler_status
    return {**await service.status(), "scheduler": get_scheduler_status()}


@router.post("/pause", dependencies=[Depends(require_api_key)])
async def pause_processing(service: TradingService = Depends(get_service)):
    await service.pause()
    return {"paused": True}


@router.post("/resume", dependencies=[Depends(require_api_key)])
async def resume_processing(service: TradingService = Depends(get_service)):
    await service.resume()
    return {"paused": False}


@router.put("/confidence-threshold", dependencies=[Depends(require_api_key)])
def set_confidence_threshold(body: ConfidenceThresholdRequest, service: TradingService = Depends(get_service)):
    return {"confidence_threshold": service.set_confidence_threshold(body.threshold)}


@router.get("/queue", dependencies=[Depends(require_api_key)])
async def queue_stats(service: TradingService = Depends(get_service)):
    return {
        "name": service.queue.options.name,
        "running": service.queue.is_running,
        "stats": await service.queue.get_stats(),
    }


@router.get("/queue/{job_id}", dependencies=[Depends(require_api_key)])
async def get_queue_job(job_id: str, service: TradingService = Depends(get_service)):
    job = await service.queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/queue/{job_id}/retry", dependencies=[Depends(require_api_key)])
async def retry_queue_job(job_id: str, service: TradingService = Depends(get_service)):
    if not await service.queue.retry_job(job_id):
        raise HTTPException(status_code=409, detail="Job not found or not in failed state")
    return {"status": "queued", "job_id": job_id}
