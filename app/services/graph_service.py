# app/services/graph_service.py
"""
Neo4j mirror — best-effort secondary index of cameras and sampled events.

Writes go through the Neo4j HTTP transactional endpoint
(POST {NEO4J_HTTP_URL}/db/{NEO4J_DATABASE}/tx/commit) with MERGE-by-id
statements, so repeated calls only refresh attributes.

Only events with at least one uploaded snapshot are mirrored; that keeps
graph write volume on the same ratio as the image throttle. The webhook
never awaits these calls: they run on the background dispatcher and
failures end up in the logs.
"""

from datetime import datetime
from typing import List, Optional
import httpx
from app.config import settings
from app.services.event_parser import ParsedChannel, ParsedIrexEvent
from app.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA_STATEMENTS = [
    "CREATE CONSTRAINT camera_id IF NOT EXISTS FOR (c:Camera) REQUIRE c.id IS UNIQUE",
    "CREATE CONSTRAINT event_id IF NOT EXISTS FOR (e:Event) REQUIRE e.id IS UNIQUE",
    "CREATE INDEX camera_region IF NOT EXISTS FOR (c:Camera) ON (c.region)",
    "CREATE INDEX event_timestamp IF NOT EXISTS FOR (e:Event) ON (e.timestamp)",
    "CREATE INDEX event_type IF NOT EXISTS FOR (e:Event) ON (e.type)",
]

MERGE_CAMERA = """
MERGE (c:Camera {id: $id})
SET c.name = coalesce($name, c.name),
    c.channel_type = $channel_type,
    c.latitude = coalesce($latitude, c.latitude),
    c.longitude = coalesce($longitude, c.longitude),
    c.region = coalesce($region, c.region),
    c.status = $status,
    c.updated_at = $updated_at
"""

MERGE_EVENT = """
MERGE (c:Camera {id: $channel_id})
MERGE (e:Event {id: $id})
SET e.event_id = $event_id,
    e.type = $topic,
    e.module = $module,
    e.level = $level,
    e.timestamp = $timestamp,
    e.image_url = $image_url,
    e.channel_id = $channel_id
MERGE (e)-[r:TRIGGERED]->(c)
SET r.image_url = $image_url
"""


class GraphStoreError(RuntimeError):
    """The graph store accepted the request but reported statement errors."""


def is_neo4j_configured() -> bool:
    return settings.NEO4J_CONFIGURED


def _commit_url() -> str:
    return f"{settings.NEO4J_HTTP_URL.rstrip('/')}/db/{settings.NEO4J_DATABASE}/tx/commit"


def _http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        timeout=settings.BACKGROUND_TASK_TIMEOUT_SECONDS,
    )


async def run_statements(statements: List[dict]) -> dict:
    """Run Cypher statements in one auto-committed transaction. Raises on transport or statement errors."""
    async with _http_client() as client:
        response = await client.post(_commit_url(), json={"statements": statements})
    response.raise_for_status()
    body = response.json()
    errors = body.get("errors") or []
    if errors:
        raise GraphStoreError("; ".join(f"{e.get('code')}: {e.get('message')}" for e in errors))
    return body


async def mirror_camera(channel: ParsedChannel):
    if not is_neo4j_configured():
        return
    await run_statements([{
        "statement": MERGE_CAMERA,
        "parameters": {
            "id": channel.id,
            "name": channel.name,
            "channel_type": channel.channel_type,
            "latitude": channel.latitude,
            "longitude": channel.longitude,
            "region": channel.region,
            "status": channel.status,
            "updated_at": datetime.utcnow().isoformat(),
        },
    }])
    logger.debug(f"[NEO4J] Camera {channel.id} merged")


async def mirror_event(event: ParsedIrexEvent, image_url: str):
    if not is_neo4j_configured():
        return
    await run_statements([{
        "statement": MERGE_EVENT,
        "parameters": {
            "id": event.id,
            "event_id": event.event_id,
            "topic": event.topic,
            "module": event.module,
            "level": event.level,
            "timestamp": event.start_time,
            "image_url": image_url,
            "channel_id": event.channel.id,
        },
    }])
    logger.info(f"[NEO4J] Event {event.event_id} merged with image")


async def init_schema() -> Optional[bool]:
    """Create constraints/indexes. Safe to re-run; failures are logged, not raised."""
    if not is_neo4j_configured():
        logger.info("[NEO4J] Not configured — graph mirror disabled")
        return None
    try:
        await run_statements([{"statement": s} for s in SCHEMA_STATEMENTS])
        logger.info("[NEO4J] Schema initialized")
        return True
    except Exception as e:
        logger.error(f"[NEO4J] Schema initialization failed: {e}")
        return False
