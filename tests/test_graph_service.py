# tests/test_graph_service.py
"""Unit tests for the Neo4j mirror (HTTP transactional API mocked)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import json
import httpx
import pytest
from unittest.mock import patch
from app.config import settings
from app.services import graph_service
from app.services.event_parser import normalize_event


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(settings, "NEO4J_HTTP_URL", "http://neo4j:7474")
    monkeypatch.setattr(settings, "NEO4J_USER", "neo4j")
    monkeypatch.setattr(settings, "NEO4J_PASSWORD", "pw")


def recording_client(requests, response_body=None, status=200):
    def handler(request):
        requests.append(request)
        return httpx.Response(status, json=response_body or {"results": [], "errors": []})
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_event():
    return normalize_event({
        "id": "e1", "event_id": "EV-1", "topic": "Intrusion", "level": 3, "start_time": 1700000000000,
        "channel": {"id": "c1", "name": "CAM-1", "address": {"city": "Jeddah"}},
    })


class TestMirror:
    @pytest.mark.asyncio
    async def test_camera_merge(self, configured):
        requests = []
        with patch("app.services.graph_service._http_client", recording_client(requests)):
            await graph_service.mirror_camera(make_event().channel)

        assert len(requests) == 1
        assert str(requests[0].url) == "http://neo4j:7474/db/neo4j/tx/commit"
        statement = json.loads(requests[0].content)["statements"][0]
        assert "MERGE (c:Camera {id: $id})" in statement["statement"]
        assert statement["parameters"]["id"] == "c1"
        assert statement["parameters"]["region"] == "Jeddah"

    @pytest.mark.asyncio
    async def test_event_merge_links_camera(self, configured):
        requests = []
        event = make_event()
        with patch("app.services.graph_service._http_client", recording_client(requests)):
            await graph_service.mirror_event(event, "https://res.cloudinary.com/x.jpg")

        statement = json.loads(requests[0].content)["statements"][0]
        assert "TRIGGERED" in statement["statement"]
        params = statement["parameters"]
        assert params["id"] == event.id
        assert params["channel_id"] == "c1"
        assert params["image_url"] == "https://res.cloudinary.com/x.jpg"
        assert params["level"] == 3

    @pytest.mark.asyncio
    async def test_not_configured_is_noop(self):
        requests = []
        with patch("app.services.graph_service.is_neo4j_configured", return_value=False), \
             patch("app.services.graph_service._http_client", recording_client(requests)):
            await graph_service.mirror_camera(make_event().channel)
        assert requests == []

    @pytest.mark.asyncio
    async def test_statement_errors_raise(self, configured):
        body = {"results": [], "errors": [{"code": "Neo.ClientError.Statement.SyntaxError", "message": "bad"}]}
        with patch("app.services.graph_service._http_client", recording_client([], body)):
            with pytest.raises(graph_service.GraphStoreError):
                await graph_service.mirror_camera(make_event().channel)

    @pytest.mark.asyncio
    async def test_http_error_raises(self, configured):
        with patch("app.services.graph_service._http_client", recording_client([], status=503)):
            with pytest.raises(httpx.HTTPStatusError):
                await graph_service.mirror_event(make_event(), "https://x")


class TestSchema:
    @pytest.mark.asyncio
    async def test_init_schema_sends_all_statements(self, configured):
        requests = []
        with patch("app.services.graph_service._http_client", recording_client(requests)):
            assert await graph_service.init_schema() is True
        statements = json.loads(requests[0].content)["statements"]
        assert len(statements) == len(graph_service.SCHEMA_STATEMENTS)

    @pytest.mark.asyncio
    async def test_init_schema_failure_is_logged_not_raised(self, configured):
        with patch("app.services.graph_service._http_client", recording_client([], status=500)):
            assert await graph_service.init_schema() is False

    @pytest.mark.asyncio
    async def test_init_schema_not_configured(self):
        with patch("app.services.graph_service.is_neo4j_configured", return_value=False):
            assert await graph_service.init_schema() is None
