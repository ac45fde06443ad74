# app/services/webhook_handler.py
"""
IREX webhook batch handler.

Parses the body (one event or an array), then for each event:
    normalize → persist (camera, event, snapshots with throttled uploads)
              → dispatch graph mirror (camera always, event only if an image was uploaded)
After the loop: dispatch throttle metrics, write one audit row, return the summary.

Each event has its own try/except so one bad event never aborts the batch.
Only a body that cannot be parsed at all, or an exception escaping every
per-event guard, turns into a 500.
"""

import time
from dataclasses import dataclass
from typing import Any, Optional
from sqlalchemy.orm import Session
from app.config import settings
from app.models.webhook_request import WebhookRequest
from app.services import graph_service, metrics_service
from app.services.background import BackgroundDispatcher, dispatcher as default_dispatcher
from app.services.event_parser import (
    EmptyPayloadError, EventValidationError, normalize_event, parse_webhook_body,
)
from app.services.persistence_service import persist_event
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class WebhookOutcome:
    status_code: int
    body: dict


def _raw_id(body: Any) -> Any:
    return body.get("id") if isinstance(body, dict) else None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def write_audit_record(db: Optional[Session], endpoint: str, method: str, status: str,
                       processing_time: int, payload: Optional[dict] = None,
                       event_id: Optional[str] = None, module: str = "IREX",
                       error: Optional[str] = None) -> bool:
    """Append one webhook_requests row. Failures are logged, never raised."""
    if db is None:
        return False
    try:
        db.add(WebhookRequest(
            endpoint=endpoint,
            method=method,
            payload=payload,
            event_id=event_id,
            level="1",
            module=module,
            status=status,
            error=error,
            processing_time=processing_time,
        ))
        db.commit()
        return True
    except Exception as e:
        db.rollback()
        logger.error(f"[WEBHOOK] Failed to log batch audit record: {e}")
        return False


async def handle_webhook(raw_body: bytes, db: Optional[Session], source: str = "irex",
                         endpoint: Optional[str] = None, method: str = "POST",
                         background: Optional[BackgroundDispatcher] = None) -> WebhookOutcome:
    start = time.monotonic()
    endpoint = endpoint or f"/api/webhook/{source}"
    background = background or default_dispatcher
    module = source.upper()
    first_event_id = None

    try:
        try:
            records = parse_webhook_body(raw_body)
        except EmptyPayloadError as e:
            logger.warning(f"[WEBHOOK] Rejected {source} payload: {e}")
            return WebhookOutcome(400, {"status": "error", "error": str(e)})

        processed = errored = 0
        processed_ids = []
        persisted_any = False
        store_unavailable = False
        graph_enabled = graph_service.is_neo4j_configured()

        for body in records:
            try:
                event = normalize_event(body, source)
                first_event_id = first_event_id or event.event_id
                if graph_enabled:
                    background.submit(f"neo4j-camera-{event.channel.id}", graph_service.mirror_camera, event.channel)

                if db is None:
                    processed += 1
                    logger.info(f"[WEBHOOK] Event {event.event_id} cam={event.channel.id} accepted (not persisted)")
                    continue

                result = await persist_event(db, event)
                processed += 1
                if not result.persisted:
                    store_unavailable = True
                    continue

                persisted_any = True
                processed_ids.append(event.event_id)
                uploaded = sum(1 for s in result.snapshots if s.uploaded)
                image_url = result.uploaded_image_url
                if image_url and graph_enabled:
                    background.submit(f"neo4j-event-{event.id}", graph_service.mirror_event, event, image_url)

                logger.info(
                    f"[WEBHOOK] Event {event.event_id} cam={event.channel.id} topic={event.topic} "
                    f"level={event.level} snapshots={len(result.snapshots)} uploaded={uploaded}"
                )
            except EventValidationError as e:
                logger.warning(f"[WEBHOOK] Skipping event {_raw_id(body)!r}: {e}")
                errored += 1
            except Exception as e:
                logger.error(f"[WEBHOOK] Error processing event {_raw_id(body)!r}: {e}", exc_info=True)
                errored += 1

        if metrics_service.is_influxdb_configured():
            background.submit("influx-throttle-metrics", metrics_service.emit_throttle_metrics)

        processing_time = _elapsed_ms(start)
        status = "success" if errored == 0 else "partial"
        if persisted_any:
            message = f"Processed {processed}/{len(records)} events"
        elif db is None:
            message = "Webhooks received (database not configured)"
        elif store_unavailable:
            message = "Webhooks received (database unavailable)"
        else:
            message = f"Processed {processed}/{len(records)} events (nothing persisted)"

        if db is None:
            logger.warning("[WEBHOOK] DATABASE_URL not configured — webhooks not persisted")
        elif not store_unavailable:
            write_audit_record(
                db, endpoint, method, status, processing_time,
                payload={
                    "eventCount": len(records),
                    "processedCount": processed,
                    "errorCount": errored,
                    "processedEventIds": processed_ids[:settings.WEBHOOK_AUDIT_MAX_IDS],
                },
                event_id=processed_ids[0] if processed_ids else "batch",
                module=module,
            )

        logger.info(f"[WEBHOOK] Batch {status}: {processed}/{len(records)} processed, "
                    f"{errored} errored in {processing_time}ms")
        return WebhookOutcome(200, {
            "status": status,
            "eventsReceived": len(records),
            "eventsProcessed": processed,
            "eventsErrored": errored,
            "processingTime": processing_time,
            "persisted": persisted_any,
            "message": message,
        })

    except Exception as e:
        logger.error(f"[WEBHOOK] {source} batch failed: {e}", exc_info=True)
        write_audit_record(
            db, endpoint, method, "error", _elapsed_ms(start),
            event_id=first_event_id, module=module, error=str(e),
        )
        return WebhookOutcome(500, {"status": "error", "error": str(e) or "Internal server error"})
