# app/routers/webhook.py
"""
IREX webhook endpoint.
POST /webhook/{source} — one event object or an array of events (JSON).
Only POST and OPTIONS are served; other methods get 405.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from app.database import get_db
from app.schemas.webhook import WebhookErrorOut, WebhookSummaryOut
from app.services.webhook_handler import handle_webhook
from app.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/webhook/{source}", summary="IREX webhook — receives event batches",
             response_model=WebhookSummaryOut,
             responses={400: {"model": WebhookErrorOut}, 500: {"model": WebhookErrorOut}})
async def receive_webhook(source: str, request: Request, db: Optional[Session] = Depends(get_db)):
    """
    Accepts a single event or an array. Returns 200 with a per-batch summary
    even when some events fail; 400 for an empty batch, 500 when the body
    cannot be parsed at all.
    """
    raw_body = await request.body()
    client = request.client.host if request.client else "unknown"
    logger.info(f"[WEBHOOK] {source} delivery from {client} | {len(raw_body)} bytes")

    outcome = await handle_webhook(raw_body, db, source=source.lower(),
                                   endpoint=request.url.path, method=request.method)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.options("/webhook/{source}", include_in_schema=False)
async def webhook_preflight(source: str):
    return Response(status_code=200)


@router.api_route("/webhook/{source}", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def webhook_method_not_allowed(source: str):
    return JSONResponse(status_code=405, content={"error": "Method not allowed"})
