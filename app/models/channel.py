# app/models/channel.py
"""
Cameras (IREX channels) table.
One row per physical camera, upserted on every event that references it.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Float, JSON
from app.database import Base


class Channel(Base):
    __tablename__ = "channels"

    id = Column(String(255), primary_key=True)
    name = Column(String(500))
    channel_type = Column(String(100))
    latitude = Column(Float)
    longitude = Column(Float)
    address = Column(JSON)          # country / region / city / district / street
    tags = Column(JSON)
    status = Column(String(50), default="active", index=True)   # active | inactive | alert
    region = Column(String(100), index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Channel {self.id} name={self.name} status={self.status}>"
