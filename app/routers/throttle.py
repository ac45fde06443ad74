# app/routers/throttle.py
"""Image throttle — read counters, tune the ratio at runtime, reset statistics."""

from datetime import datetime, timezone
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from app.schemas.throttle import ThrottleConfigOut, ThrottleConfigUpdate, ThrottleStatsOut
from app.services import metrics_service
from app.services.background import dispatcher
from app.services.throttle import throttle
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


def _config_out() -> dict:
    return ThrottleConfigOut.model_validate(throttle.config).model_dump(by_alias=True)


def _stats_out(stats: dict) -> dict:
    return ThrottleStatsOut(**stats).model_dump(by_alias=True)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/throttle", summary="Current throttle config + headline counters")
def get_throttle():
    stats = throttle.stats()
    return JSONResponse(headers=NO_STORE, content={
        "success": True,
        "config": _config_out(),
        "stats": {
            "totalReceived": stats["total_received"],
            "totalProcessed": stats["total_processed"],
            "totalSkipped": stats["total_skipped"],
            "effectiveRatio": stats["effective_ratio"],
        },
        "timestamp": _now(),
    })


@router.get("/throttle/stats", summary="Full throttle statistics incl. hourly buckets")
def get_throttle_stats():
    return JSONResponse(headers=NO_STORE, content={
        "success": True,
        "stats": _stats_out(throttle.stats()),
        "config": _config_out(),
        "timestamp": _now(),
    })


@router.post("/throttle", summary="Update throttle configuration")
async def update_throttle(request: Request):
    """
    Partial update: any of enabled, processRatio (0-1), maxPerHour (>=1),
    samplingMethod (interval | random). Invalid input → 400.
    """
    try:
        body = ThrottleConfigUpdate.model_validate(await request.json())
        config = throttle.update_config(
            enabled=body.enabled,
            process_ratio=body.processRatio,
            max_per_hour=body.maxPerHour,
            sampling_method=body.samplingMethod,
        )
    except (ValidationError, ValueError) as e:
        logger.warning(f"[THROTTLE] Rejected config update: {e}")
        return JSONResponse(status_code=400, headers=NO_STORE,
                            content={"success": False, "error": str(e)})

    if metrics_service.is_influxdb_configured():
        dispatcher.submit("influx-throttle-metrics", metrics_service.emit_throttle_metrics)

    return JSONResponse(headers=NO_STORE, content={
        "success": True,
        "config": ThrottleConfigOut.model_validate(config).model_dump(by_alias=True),
        "message": config.description,
    })


@router.post("/throttle/reset", summary="Reset throttle statistics")
def reset_throttle():
    throttle.reset()
    return JSONResponse(headers=NO_STORE, content={
        "success": True,
        "message": "Throttle statistics reset",
        "stats": _stats_out(throttle.stats()),
    })
