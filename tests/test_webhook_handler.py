# tests/test_webhook_handler.py
"""End-to-end tests for the webhook batch handler (SQLite store, mocked uploads)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json
import pytest
from unittest.mock import AsyncMock, patch
from app.models.channel import Channel
from app.models.snapshot import Snapshot
from app.models.webhook_request import WebhookRequest
from app.services import graph_service
from app.services.cloudinary_service import UploadResult
from app.services.throttle import AdmissionController, ThrottleConfig
from app.services.event_parser import normalize_event
from app.services.webhook_handler import handle_webhook

CLOUDINARY_URL = "https://res.cloudinary.com/demo/image/upload/eli-events/e1_FULL.jpg"


class RecordingDispatcher:
    def __init__(self):
        self.submitted = []

    def submit(self, name, func, *args, **kwargs):
        self.submitted.append((name, func, args))

    def calls_to(self, func):
        return [args for _, f, args in self.submitted if f is func]


def body(*events):
    return json.dumps(list(events) if len(events) != 1 else events[0]).encode()


def irex_event(event_id="e1", channel_id="c1", **overrides):
    event = {
        "id": event_id,
        "topic": "Intrusion",
        "channel": {"id": channel_id, "name": "CAM-1"},
        "snapshots": [{"type": "FULL", "path": "/tmp/a.jpg", "image": "aGVsbG8="}],
    }
    event.update(overrides)
    return event


def controller(ratio):
    return AdmissionController(ThrottleConfig(enabled=True, process_ratio=ratio, max_per_hour=1000))


@pytest.fixture
def upload_ok():
    result = UploadResult(success=True, url=CLOUDINARY_URL, public_id="eli-events/e1_FULL_1")
    with patch("app.services.cloudinary_service.upload_image", AsyncMock(return_value=result)) as mock:
        yield mock


@pytest.fixture
def admit_all():
    with patch("app.services.snapshot_service.default_throttle", controller(1.0)) as ctrl:
        yield ctrl


@pytest.fixture
def graph_on():
    with patch("app.services.graph_service.is_neo4j_configured", return_value=True), \
         patch("app.services.metrics_service.is_influxdb_configured", return_value=False):
        yield


class TestBatch:
    @pytest.mark.asyncio
    async def test_single_event_with_upload(self, db, upload_ok, admit_all, graph_on):
        dispatcher = RecordingDispatcher()
        outcome = await handle_webhook(body(irex_event()), db, background=dispatcher)

        assert outcome.status_code == 200
        assert outcome.body["status"] == "success"
        assert outcome.body["eventsProcessed"] == 1
        assert outcome.body["eventsErrored"] == 0
        assert outcome.body["persisted"] is True

        assert db.get(Channel, "c1").name == "CAM-1"
        snap = db.query(Snapshot).one()
        assert snap.cloudinary_public_id is not None
        assert snap.image_url == CLOUDINARY_URL
        assert snap.path == "/tmp/a.jpg"

        audit = db.query(WebhookRequest).one()
        assert audit.status == "success"
        assert audit.payload["processedEventIds"] == ["e1"]

    @pytest.mark.asyncio
    async def test_one_bad_event_does_not_abort_batch(self, db, upload_ok, admit_all, graph_on):
        bad = irex_event("e3")
        del bad["channel"]
        outcome = await handle_webhook(
            body(irex_event("e1"), irex_event("e2"), bad), db, background=RecordingDispatcher())

        assert outcome.status_code == 200
        assert outcome.body["status"] == "partial"
        assert outcome.body["eventsReceived"] == 3
        assert outcome.body["eventsProcessed"] == 2
        assert outcome.body["eventsErrored"] == 1
        assert db.query(WebhookRequest).one().status == "partial"

    @pytest.mark.asyncio
    async def test_upload_failure_falls_back_to_path(self, db, admit_all, graph_on):
        failed = UploadResult(success=False, error="Upload failed: 500")
        with patch("app.services.cloudinary_service.upload_image", AsyncMock(return_value=failed)):
            outcome = await handle_webhook(body(irex_event()), db, background=RecordingDispatcher())

        assert outcome.body["eventsProcessed"] == 1
        snap = db.query(Snapshot).one()
        assert snap.image_url == "/tmp/a.jpg"
        assert snap.cloudinary_public_id is None
        assert admit_all.stats()["total_skipped"] == 1


class TestGraphGating:
    @pytest.mark.asyncio
    async def test_uploaded_event_is_mirrored_once(self, db, upload_ok, admit_all, graph_on):
        dispatcher = RecordingDispatcher()
        await handle_webhook(body(irex_event()), db, background=dispatcher)

        events = dispatcher.calls_to(graph_service.mirror_event)
        assert len(events) == 1
        event, image_url = events[0]
        assert event.source_id == "e1"
        assert image_url == CLOUDINARY_URL
        assert len(dispatcher.calls_to(graph_service.mirror_camera)) == 1

    @pytest.mark.asyncio
    async def test_denied_snapshot_skips_event_mirror(self, db, upload_ok, graph_on):
        dispatcher = RecordingDispatcher()
        with patch("app.services.snapshot_service.default_throttle", controller(0.0)):
            await handle_webhook(body(irex_event()), db, background=dispatcher)

        upload_ok.assert_not_called()
        assert dispatcher.calls_to(graph_service.mirror_event) == []
        assert len(dispatcher.calls_to(graph_service.mirror_camera)) == 1

    @pytest.mark.asyncio
    async def test_graph_not_configured_submits_nothing(self, db, upload_ok, admit_all):
        dispatcher = RecordingDispatcher()
        with patch("app.services.graph_service.is_neo4j_configured", return_value=False), \
             patch("app.services.metrics_service.is_influxdb_configured", return_value=False):
            await handle_webhook(body(irex_event()), db, background=dispatcher)
        assert dispatcher.submitted == []

    @pytest.mark.asyncio
    async def test_metrics_dispatched_once_per_batch(self, db, upload_ok, admit_all):
        from app.services import metrics_service
        dispatcher = RecordingDispatcher()
        with patch("app.services.graph_service.is_neo4j_configured", return_value=False), \
             patch("app.services.metrics_service.is_influxdb_configured", return_value=True):
            await handle_webhook(body(irex_event("e1"), irex_event("e2")), db, background=dispatcher)
        assert len(dispatcher.calls_to(metrics_service.emit_throttle_metrics)) == 1


class TestRejections:
    @pytest.mark.asyncio
    async def test_empty_body(self, db):
        outcome = await handle_webhook(b"", db, background=RecordingDispatcher())
        assert outcome.status_code == 400
        assert outcome.body["status"] == "error"

    @pytest.mark.asyncio
    async def test_empty_array(self, db):
        outcome = await handle_webhook(b"[]", db, background=RecordingDispatcher())
        assert outcome.status_code == 400

    @pytest.mark.asyncio
    async def test_malformed_json_logs_error_row(self, db):
        outcome = await handle_webhook(b"{not json", db, background=RecordingDispatcher())
        assert outcome.status_code == 500
        assert outcome.body["status"] == "error"
        audit = db.query(WebhookRequest).one()
        assert audit.status == "error"
        assert audit.error

    @pytest.mark.asyncio
    async def test_database_not_configured(self, upload_ok, admit_all, graph_on):
        outcome = await handle_webhook(body(irex_event()), None, background=RecordingDispatcher())
        assert outcome.status_code == 200
        assert outcome.body["persisted"] is False
        assert outcome.body["eventsProcessed"] == 1
        assert "not configured" in outcome.body["message"]
        upload_ok.assert_not_called()


class TestOutOfRangeValues:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("level", "inf"),
        ("start_time", "1e999"),
        ("end_time", "Infinity"),
        ("start_time", "NaN"),
        ("level", 10 ** 400),
    ])
    async def test_odd_numeric_value_does_not_fail_batch(self, db, upload_ok, admit_all, graph_on,
                                                         field, value):
        odd = irex_event("e2", snapshots=[])
        odd[field] = value
        outcome = await handle_webhook(
            body(irex_event("e1", snapshots=[]), odd), db, background=RecordingDispatcher())

        assert outcome.status_code == 200
        assert outcome.body["eventsReceived"] == 2
        assert outcome.body["eventsProcessed"] + outcome.body["eventsErrored"] == 2
        assert outcome.body["eventsProcessed"] >= 1

    @pytest.mark.asyncio
    async def test_unexpected_normalize_error_counts_as_errored(self, db, upload_ok, admit_all, graph_on):
        real_normalize = normalize_event

        def flaky(raw, source="irex"):
            if raw.get("id") == "e2":
                raise OverflowError("cannot convert float infinity to integer")
            return real_normalize(raw, source)

        with patch("app.services.webhook_handler.normalize_event", side_effect=flaky):
            outcome = await handle_webhook(
                body(irex_event("e1", snapshots=[]), irex_event("e2", snapshots=[])),
                db, background=RecordingDispatcher())

        assert outcome.status_code == 200
        assert outcome.body["status"] == "partial"
        assert outcome.body["eventsProcessed"] == 1
        assert outcome.body["eventsErrored"] == 1
