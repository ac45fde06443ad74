# app/services/persistence_service.py
"""
Persistence orchestrator — writes one normalised IREX event:

  1. resolve each snapshot               — admission + Cloudinary upload, no DB work
  2. upsert the camera (channels)        — must exist before the event references it
  3. upsert the event (events)           — must exist before snapshots reference it
  4. upsert each snapshot                — keyed by (event row id, index)

Every write is INSERT ... ON CONFLICT DO UPDATE so redeliveries and
concurrent deliveries of the same event are safe without locking.
Steps 2-4 are committed together per event with no await in between.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
from sqlalchemy import case, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session
from app.models.channel import Channel
from app.models.event import Event
from app.models.snapshot import Snapshot
from app.services.event_parser import ParsedChannel, ParsedIrexEvent
from app.services.snapshot_service import ResolvedSnapshot, resolve_snapshot
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PersistResult:
    persisted: bool
    event_row_id: Optional[str] = None
    snapshots: List[ResolvedSnapshot] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def uploaded_image_url(self) -> Optional[str]:
        """First snapshot that was admitted and uploaded — gates the graph mirror."""
        for snap in self.snapshots:
            if snap.uploaded:
                return snap.image_url
        return None


def _insert(db: Session, table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect '{dialect}'")


def make_snapshot_id(event_row_id: str, index: int) -> str:
    return f"snap_{event_row_id}_{index}"


def upsert_channel(db: Session, channel: ParsedChannel):
    """Last write wins for fields present in this delivery; absent fields keep their stored value."""
    now = datetime.utcnow()
    values = {
        "id": channel.id,
        "name": channel.name,
        "channel_type": channel.channel_type,
        "latitude": channel.latitude,
        "longitude": channel.longitude,
        "address": channel.address,
        "tags": channel.tags,
        "status": channel.status,
        "region": channel.region,
        "created_at": now,
        "updated_at": now,
    }
    updates = {k: v for k, v in values.items() if v is not None and k not in ("id", "created_at")}
    updates["updated_at"] = now

    stmt = _insert(db, Channel.__table__).values(**values)
    db.execute(stmt.on_conflict_do_update(index_elements=[Channel.__table__.c.id], set_=updates))


def upsert_event(db: Session, event: ParsedIrexEvent):
    """Redelivery overwrites everything except the row id and the original created_at."""
    channel = event.channel
    values = {
        "id": event.id,
        "event_id": event.event_id,
        "monitor_id": event.monitor_id,
        "topic": event.topic,
        "module": event.module,
        "level": event.level,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "latitude": channel.latitude,
        "longitude": channel.longitude,
        "channel_id": channel.id,
        "channel_type": channel.channel_type,
        "channel_name": channel.name,
        "channel_address": channel.address,
        "params": event.params,
        "tags": event.tags,
        "created_at": datetime.utcnow(),
    }
    updates = {k: v for k, v in values.items() if k not in ("id", "created_at")}

    stmt = _insert(db, Event.__table__).values(**values)
    db.execute(stmt.on_conflict_do_update(index_elements=[Event.__table__.c.id], set_=updates))


def upsert_snapshot(db: Session, event_row_id: str, index: int, snapshot: ResolvedSnapshot):
    """
    A stored Cloudinary URL is never replaced by a fallback path: the row keeps
    its upload unless this delivery produced a new one.
    """
    table = Snapshot.__table__
    stmt = _insert(db, table).values(
        id=make_snapshot_id(event_row_id, index),
        event_id=event_row_id,
        type=snapshot.type or "UNKNOWN",
        path=snapshot.path,
        image_url=snapshot.image_url or snapshot.path,
        cloudinary_public_id=snapshot.public_id,
        created_at=datetime.utcnow(),
    )
    new = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.id],
        set_={
            "type": new.type,
            "path": new.path,
            "image_url": case(
                (new.cloudinary_public_id.isnot(None), new.image_url),
                (table.c.cloudinary_public_id.isnot(None), table.c.image_url),
                else_=func.coalesce(new.image_url, table.c.image_url),
            ),
            "cloudinary_public_id": func.coalesce(new.cloudinary_public_id, table.c.cloudinary_public_id),
        },
    )
    db.execute(stmt)


async def persist_event(db: Session, event: ParsedIrexEvent) -> PersistResult:
    """
    Write camera, event and snapshots for one event.
    Snapshots are resolved (and uploaded) first so no transaction is open
    while waiting on Cloudinary; the upserts then run and commit back to back.
    A connection-level failure returns persisted=False; anything else
    (constraint violations etc.) is rolled back and re-raised to the caller.
    """
    resolved = []
    total = len(event.snapshots)
    for index, raw in enumerate(event.snapshots):
        resolved.append(await resolve_snapshot(raw, event.event_id, index, total))

    try:
        upsert_channel(db, event.channel)
        upsert_event(db, event)
        for index, snap in enumerate(resolved):
            upsert_snapshot(db, event.id, index, snap)
        db.commit()
        return PersistResult(persisted=True, event_row_id=event.id, snapshots=resolved)

    except (OperationalError, InterfaceError) as e:
        db.rollback()
        logger.warning(f"[DB] Store unavailable, event {event.event_id} not persisted: {e}")
        return PersistResult(persisted=False, event_row_id=event.id, snapshots=resolved, error=str(e))
    except Exception:
        db.rollback()
        raise
