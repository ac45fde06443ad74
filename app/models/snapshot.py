# app/models/snapshot.py
"""
Snapshots table — images attached to an event.
image_url holds the image-service URL when the throttle admitted the upload,
otherwise the path the camera reported.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey
from app.database import Base


class Snapshot(Base):
    __tablename__ = "snapshots"

    id = Column(String(255), primary_key=True)      # snap_<event row id>_<index>
    event_id = Column(String(255), ForeignKey("events.id"), nullable=False, index=True)
    type = Column(String(50), index=True)           # FULLSCREEN | THUMBNAIL | ...
    path = Column(String(1000))
    image_url = Column(String(1000))
    cloudinary_public_id = Column(String(500))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Snapshot {self.id} type={self.type} uploaded={bool(self.cloudinary_public_id)}>"
