# app/schemas/webhook.py
from pydantic import BaseModel
from typing import Optional


class WebhookSummaryOut(BaseModel):
    status: str                 # success | partial
    eventsReceived: int
    eventsProcessed: int
    eventsErrored: int
    processingTime: int         # ms
    persisted: bool
    message: str


class WebhookErrorOut(BaseModel):
    status: str = "error"
    error: Optional[str] = None
