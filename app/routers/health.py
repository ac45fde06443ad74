# app/routers/health.py
"""
System health check endpoint.
Returns status of backend + DB + which downstream stores are configured.
"""

from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import text
from app.database import get_db
from app.config import settings
from app.services.background import dispatcher
from app.services.throttle import throttle
from datetime import datetime

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Optional[Session] = Depends(get_db)):
    """
    Returns:
    - Backend status
    - Database connectivity (not_configured when DATABASE_URL is unset)
    - Cloudinary / Neo4j / InfluxDB configured flags
    - Throttle state and background queue depth
    """
    config = throttle.config
    result = {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "backend": "ok",
        "database": "not_configured",
        "cloudinary": settings.CLOUDINARY_CONFIGURED,
        "neo4j": settings.NEO4J_CONFIGURED,
        "influxdb": settings.INFLUXDB_CONFIGURED,
        "throttle": {"enabled": config.enabled, "processRatio": config.process_ratio},
        "backgroundPending": dispatcher.pending,
    }

    if db is not None:
        try:
            db.execute(text("SELECT 1"))
            result["database"] = "ok"
        except Exception as e:
            result["database"] = f"error: {str(e)}"
            result["status"] = "degraded"

    return result
