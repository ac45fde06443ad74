# app/models/event.py
"""
Events table — one row per IREX analytics event.
The primary key is generated server-side; the upstream ids are kept as
attributes. Camera attributes are denormalised so read paths need no join.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Float, JSON, ForeignKey
from app.database import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(String(255), primary_key=True)
    event_id = Column(String(255), index=True)      # upstream event_id (or id)
    monitor_id = Column(String(255))
    topic = Column(String(500), index=True)
    module = Column(String(100))
    level = Column(Integer, index=True)             # 0=low … 3=critical
    start_time = Column(BigInteger, index=True)     # epoch millis
    end_time = Column(BigInteger)
    latitude = Column(Float)
    longitude = Column(Float)
    channel_id = Column(String(255), ForeignKey("channels.id"), index=True)
    channel_type = Column(String(100))
    channel_name = Column(String(500))
    channel_address = Column(JSON)
    params = Column(JSON)
    tags = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f"<Event {self.id} topic={self.topic} cam={self.channel_id} level={self.level}>"
