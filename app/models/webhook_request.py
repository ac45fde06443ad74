# app/models/webhook_request.py
"""
Webhook audit log — one row per inbound batch request.
Stores counts rather than the full payload so large batches stay small.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from app.database import Base


class WebhookRequest(Base):
    __tablename__ = "webhook_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(String(255), nullable=False)
    method = Column(String(10), nullable=False)
    payload = Column(JSON)
    event_id = Column(String(255))
    level = Column(String(50), index=True)
    module = Column(String(100), index=True)
    status = Column(String(50), default="success")   # success | partial | error
    error = Column(Text)
    processing_time = Column(Integer)                 # ms
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<WebhookRequest {self.id} {self.method} {self.endpoint} status={self.status}>"
