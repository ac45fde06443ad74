# app/services/metrics_service.py
"""
InfluxDB emitter for throttle counters.

Writes two line-protocol points per emission to the v2 write API:

  image_throttle,type=processing received=..i,processed=..i,skipped=..i,projected=..i <ms>
  image_throttle,type=totals total_received=..i,total_processed=..i,total_skipped=..i <ms>

Called once per webhook batch (fire-and-forget) and from a periodic loop
started at app startup.
"""

import asyncio
import time
from typing import Optional
import httpx
from app.config import settings
from app.services.throttle import throttle
from app.utils.logger import get_logger

logger = get_logger(__name__)

MEASUREMENT = "image_throttle"


def is_influxdb_configured() -> bool:
    return settings.INFLUXDB_CONFIGURED


def build_throttle_lines(stats: dict, timestamp_ms: int) -> str:
    return "\n".join([
        f"{MEASUREMENT},type=processing "
        f"received={stats['last_hour_received']}i,processed={stats['last_hour_processed']}i,"
        f"skipped={stats['last_hour_skipped']}i,projected={stats['projected_if_no_throttle']}i {timestamp_ms}",
        f"{MEASUREMENT},type=totals "
        f"total_received={stats['total_received']}i,total_processed={stats['total_processed']}i,"
        f"total_skipped={stats['total_skipped']}i {timestamp_ms}",
    ])


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.BACKGROUND_TASK_TIMEOUT_SECONDS)


async def emit_throttle_metrics(stats: Optional[dict] = None) -> bool:
    """Push the current throttle snapshot. Returns False (and logs) on any failure."""
    if not is_influxdb_configured():
        return False

    stats = stats if stats is not None else throttle.stats()
    body = build_throttle_lines(stats, int(time.time() * 1000))
    try:
        async with _http_client() as client:
            response = await client.post(
                f"{settings.INFLUXDB_HOST.rstrip('/')}/api/v2/write",
                params={"org": settings.INFLUXDB_ORG, "bucket": settings.INFLUXDB_BUCKET, "precision": "ms"},
                headers={
                    "Authorization": f"Token {settings.INFLUXDB_TOKEN}",
                    "Content-Type": "text/plain; charset=utf-8",
                },
                content=body,
            )
        if response.status_code // 100 != 2:
            logger.error(f"[INFLUX] Write failed: HTTP {response.status_code} {response.text[:200]}")
            return False
        logger.debug(f"[INFLUX] Throttle metrics written ({stats['total_received']} received)")
        return True
    except Exception as e:
        logger.error(f"[INFLUX] Failed to record throttle metrics: {e}")
        return False


async def run_periodic_emitter(interval_seconds: int):
    """Emit throttle metrics every interval until cancelled."""
    logger.info(f"[INFLUX] Periodic throttle metrics every {interval_seconds}s")
    while True:
        await asyncio.sleep(interval_seconds)
        await emit_throttle_metrics()
