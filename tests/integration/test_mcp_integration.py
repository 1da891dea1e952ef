"""
Integration tests for the MCP tool surface.
"""

import asyncio
import json

import pytest

from config.settings import config
from search_intel.mcp_server import SearchIntelMCPServer
from search_intel.service import create_search_intelligence
from search_intel.storage import MemoryStore


EXPECTED_TOOLS = {
    "get_suggestions",
    "track_search",
    "get_analytics_summary",
    "get_performance_metrics",
    "export_analytics",
    "clear_analytics",
    "get_privacy_settings",
    "set_privacy_settings",
}


@pytest.fixture
def server(monkeypatch):
    monkeypatch.setenv("USE_LOGURU", "false")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.setenv("BATCH_DELAY_MS", "10")
    monkeypatch.setenv("ENABLE_PROMETHEUS_METRICS", "false")
    intelligence = create_search_intelligence(config, store=MemoryStore())
    yield SearchIntelMCPServer(intelligence=intelligence)
    intelligence.reset()
    intelligence.dispose()


async def call(server, name, arguments=None):
    result = await server._call_tool(name, arguments or {})
    return result, result.content[0].text


@pytest.mark.asyncio
async def test_all_tools_registered(server):
    tools = await server._list_tools()
    assert {tool.name for tool in tools} == EXPECTED_TOOLS


@pytest.mark.asyncio
async def test_get_suggestions_tool(server):
    result, text = await call(server, "get_suggestions", {"query": "machine", "max_results": 2})

    assert not result.isError
    payload = json.loads(text)
    assert payload["query"] == "machine"
    assert len(payload["suggestions"]) == 2
    assert payload["suggestions"][0]["source"] == "trending"
    assert payload["suggestions"][0]["metadata"]["match_type"] == "exact"


@pytest.mark.asyncio
async def test_invalid_arguments_are_rejected(server):
    result, text = await call(server, "get_suggestions", {"max_results": 5})
    assert result.isError
    assert "Validation error" in text

    result, text = await call(server, "get_suggestions", {"query": "machine", "sources": ["web"]})
    assert result.isError


@pytest.mark.asyncio
async def test_unknown_tool(server):
    result, text = await call(server, "optimize_search", {"query": "machine"})
    assert result.isError
    assert "Unknown tool" in text


@pytest.mark.asyncio
async def test_track_and_summarize(server):
    await call(server, "track_search", {"query": "machine learning", "response_time": 120, "results_count": 7})
    await call(server, "track_search", {"query": "deep learning", "success": False, "error_type": "timeout"})
    await asyncio.sleep(0.05)

    _, text = await call(server, "get_analytics_summary", {"days": 7})
    summary = json.loads(text)
    assert summary["total_searches"] == 2
    assert summary["success_rate"] == 50

    _, text = await call(server, "get_performance_metrics")
    metrics = json.loads(text)
    assert metrics["performance"]["common_errors"] == [{"error_type": "timeout", "count": 1}]
    assert metrics["server"]["format"] == "simple"


@pytest.mark.asyncio
async def test_export_and_clear(server):
    await call(server, "track_search", {"query": "=HYPERLINK(\"x\")"})

    _, csv_text = await call(server, "export_analytics", {"format": "csv"})
    assert "'=HYPERLINK" in csv_text

    _, json_text = await call(server, "export_analytics", {"include_queries": False})
    assert json.loads(json_text)[0]["query"] == "[REDACTED]"

    await call(server, "clear_analytics")
    _, json_text = await call(server, "export_analytics")
    assert json.loads(json_text) == []


@pytest.mark.asyncio
async def test_privacy_settings_tools(server):
    _, text = await call(server, "get_privacy_settings")
    assert json.loads(text)["ai_suggestions_enabled"] is False

    _, text = await call(server, "set_privacy_settings", {"personalization_enabled": False})
    settings = json.loads(text)
    assert settings["personalization_enabled"] is False
    assert settings["trending_queries_enabled"] is True

    _, text = await call(server, "get_suggestions", {"query": "machine"})
    assert json.loads(text)["suggestions"] == []


@pytest.mark.asyncio
async def test_server_metrics_fallback(server):
    await call(server, "get_privacy_settings")
    await call(server, "get_suggestions", {})

    metrics = server.get_metrics()["metrics"]
    assert metrics["total_requests"] == 2
    assert metrics["successful_requests"] == 1
    assert metrics["failed_requests"] == 1
