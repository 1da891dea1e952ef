"""
Search Intelligence MCP Server implementation.

This module implements a Model Context Protocol (MCP) server exposing the
search intelligence subsystem through these tools:
- get_suggestions: Ranked autocomplete suggestions for a partial query
- track_search: Record a search event
- get_analytics_summary / get_performance_metrics: Usage statistics
- export_analytics / clear_analytics: Export or wipe recorded events
- get_privacy_settings / set_privacy_settings: Personalization controls

The server provides logging, argument validation, rate limiting, timeouts,
metrics and a final analytics flush on shutdown.
"""

import asyncio
import json
import signal
import sys
import time
import uuid
from typing import Any, Dict, List, Optional

from aiolimiter import AsyncLimiter
from jsonschema import ValidationError, validate
from mcp.server import Server
from mcp.types import CallToolResult, TextContent, Tool
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import ConfigurationError, config
from config.tool_loader import ToolConfigLoader
from .logging_setup import setup_logging
from .models import ExportFormat, PrivacySettings
from .service import SearchIntelligence, create_search_intelligence


class SearchIntelMCPServer:
    """
    Search Intelligence MCP Server.

    Serves suggestions, analytics and privacy controls over stdio.
    """

    def __init__(self, intelligence: Optional[SearchIntelligence] = None) -> None:
        """Initialize the server; ``intelligence`` is built lazily when omitted."""
        self.server = Server("search-intel")
        self.logger = setup_logging()
        self._register_handlers()

        # Load tool configurations
        self.tool_loader = ToolConfigLoader()

        # Tool schema cache for validation
        self._tool_schemas: Dict[str, Dict[str, Any]] = {}

        if config.ENABLE_RATE_LIMITING:
            self.rate_limiter = AsyncLimiter(
                max_rate=config.RATE_LIMIT_REQUESTS,
                time_period=config.RATE_LIMIT_WINDOW
            )
        else:
            self.rate_limiter = None

        if config.ENABLE_PROMETHEUS_METRICS:
            self.registry = CollectorRegistry()
            self.request_counter = Counter(
                'mcp_requests_total',
                'Total number of MCP requests',
                ['tool_name', 'status'],
                registry=self.registry
            )
            self.request_duration = Histogram(
                'mcp_request_duration_seconds',
                'Duration of MCP requests',
                ['tool_name'],
                registry=self.registry
            )
            self.active_requests = Gauge(
                'mcp_active_requests',
                'Number of active MCP requests',
                registry=self.registry
            )
        else:
            self.metrics = {
                "total_requests": 0,
                "successful_requests": 0,
                "failed_requests": 0,
                "average_response_time": 0.0,
                "tool_usage": {},
            }

        self._intelligence = intelligence

        # Tool dispatch table
        self._tool_handlers = {
            "get_suggestions": self._get_suggestions,
            "track_search": self._track_search,
            "get_analytics_summary": self._get_analytics_summary,
            "get_performance_metrics": self._get_performance_metrics,
            "export_analytics": self._export_analytics,
            "clear_analytics": self._clear_analytics,
            "get_privacy_settings": self._get_privacy_settings,
            "set_privacy_settings": self._set_privacy_settings,
        }

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown handlers for SIGINT and SIGTERM."""

        def signal_handler(signum: int, frame) -> None:
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name}, initiating graceful shutdown...")
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _register_handlers(self) -> None:
        """Register MCP server handlers."""
        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            return await self._list_tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]):
            result = await self._call_tool(name, arguments)
            return result.content

    def _generate_request_id(self) -> str:
        """Generate unique request ID for tracing."""
        return f"req_{uuid.uuid4().hex[:8]}"

    async def _list_tools(self) -> List[Tool]:
        self.logger.debug("Listing available tools")
        return self.tool_loader.get_tool_definitions()

    async def _validate_tool_arguments(self, tool_name: str, arguments: Dict[str, Any]) -> None:
        """
        Validate tool arguments against JSON Schema.

        Raises:
            ValueError: If the tool is unknown or the arguments are invalid
        """
        if tool_name not in self._tool_schemas:
            for tool in await self._list_tools():
                self._tool_schemas[tool.name] = tool.inputSchema

        if tool_name not in self._tool_schemas:
            raise ValueError(f"Unknown tool: {tool_name}")

        try:
            validate(instance=arguments, schema=self._tool_schemas[tool_name])
        except ValidationError as e:
            raise ValueError(f"Invalid arguments for tool '{tool_name}': {e.message}")

    def _update_metrics(self, tool_name: str, execution_time: float, success: bool) -> None:
        """Update performance metrics using Prometheus or fallback."""
        if config.ENABLE_PROMETHEUS_METRICS:
            status = "success" if success else "error"
            self.request_counter.labels(tool_name=tool_name, status=status).inc()
            self.request_duration.labels(tool_name=tool_name).observe(execution_time)
        else:
            self.metrics["total_requests"] += 1
            usage = self.metrics["tool_usage"]
            usage[tool_name] = usage.get(tool_name, 0) + 1

            if success:
                self.metrics["successful_requests"] += 1
            else:
                self.metrics["failed_requests"] += 1

            total_requests = self.metrics["total_requests"]
            current_avg = self.metrics["average_response_time"]
            self.metrics["average_response_time"] = (
                current_avg * (total_requests - 1) + execution_time
            ) / total_requests

    @staticmethod
    def _error(message: str) -> CallToolResult:
        return CallToolResult(
            content=[TextContent(type="text", text=f"Error: {message}")],
            isError=True,
        )

    async def _call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> CallToolResult:
        """
        Execute a tool with validation, rate limiting, timeout control and metrics.

        Args:
            name: The name of the tool to execute
            arguments: Arguments provided for the tool

        Returns:
            CallToolResult whose single TextContent holds the JSON result
        """
        request_id = self._generate_request_id()
        start_time = time.time()
        arguments = arguments or {}

        self.logger.info(f"[{request_id}] Executing tool: {name} with arguments: {arguments}")

        if config.ENABLE_PROMETHEUS_METRICS:
            self.active_requests.inc()
        try:
            if self.rate_limiter:
                await self.rate_limiter.acquire()

            try:
                await self._validate_tool_arguments(name, arguments)
            except ValueError as e:
                self.logger.error(f"[{request_id}] Validation error: {e}")
                self._update_metrics(name, time.time() - start_time, False)
                return self._error(f"Validation error: {e}")

            handler = self._tool_handlers.get(name)
            if handler is None:
                self.logger.error(f"[{request_id}] Unknown tool: {name}")
                self._update_metrics(name, time.time() - start_time, False)
                return self._error(f"Unknown tool: {name}")

            timeout_seconds = config.TIMEOUT_SECONDS
            try:
                async with asyncio.timeout(timeout_seconds):
                    result = await handler(request_id, **arguments)
            except asyncio.TimeoutError:
                self.logger.error(f"[{request_id}] Tool execution timed out after {timeout_seconds}s")
                self._update_metrics(name, time.time() - start_time, False)
                return self._error(f"Tool execution timed out after {timeout_seconds}s")

            execution_time = time.time() - start_time
            self.logger.info(f"[{request_id}] Tool '{name}' completed successfully in {execution_time:.3f}s")
            self._update_metrics(name, execution_time, True)

            text = result if isinstance(result, str) else json.dumps(result, indent=2)
            return CallToolResult(content=[TextContent(type="text", text=text)])

        except Exception as e:
            error_msg = f"Unexpected error executing tool {name}: {e}"
            self.logger.error(f"[{request_id}] {error_msg}")
            self._update_metrics(name, time.time() - start_time, False)
            return self._error(error_msg)
        finally:
            if config.ENABLE_PROMETHEUS_METRICS:
                self.active_requests.dec()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    ) if config.ENABLE_RETRY_LOGIC else lambda f: f
    async def _get_intelligence(self) -> SearchIntelligence:
        """Get or initialize the search intelligence service with retry logic."""
        if self._intelligence is None:
            self._intelligence = create_search_intelligence(config)
            self.logger.info("Search intelligence service initialized successfully")
        return self._intelligence

    # Tool handlers

    async def _get_suggestions(self,
                               request_id: str,
                               query: str,
                               max_results: int = 10,
                               sources: Optional[List[str]] = None,
                               min_score: float = 0,
                               personalized: bool = True) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        suggestions = await intelligence.suggestions.get_suggestions(
            query,
            max_results=max_results,
            sources=sources,
            min_score=min_score,
            personalized=personalized,
        )
        self.logger.info(f"[{request_id}] {len(suggestions)} suggestions for '{query}'")
        return {
            "query": query,
            "suggestions": [s.to_dict() for s in suggestions],
        }

    async def _track_search(self, request_id: str, **event: Any) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        intelligence.analytics.track_search(**event)
        return {"tracked": True, "pending": intelligence.analytics.pending_count}

    async def _get_analytics_summary(self, request_id: str, days: int = 30) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        return intelligence.analytics.get_summary(days).to_dict()

    async def _get_performance_metrics(self, request_id: str) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        return {
            "performance": intelligence.analytics.get_performance_metrics().to_dict(),
            "suggestions": intelligence.metrics.snapshot(),
            "server": self.get_metrics(),
        }

    async def _export_analytics(self,
                                request_id: str,
                                format: str = "json",
                                start: Optional[float] = None,
                                end: Optional[float] = None,
                                include_queries: bool = True) -> str:
        intelligence = await self._get_intelligence()
        date_range = None
        if start is not None or end is not None:
            date_range = (
                start if start is not None else float("-inf"),
                end if end is not None else float("inf"),
            )
        intelligence.analytics.flush()
        return intelligence.analytics.export_data(
            ExportFormat(format), date_range=date_range, include_queries=include_queries
        )

    async def _clear_analytics(self, request_id: str) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        intelligence.analytics.clear_data()
        return {"cleared": True}

    async def _get_privacy_settings(self, request_id: str) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        return intelligence.suggestions.get_privacy_settings().to_dict()

    async def _set_privacy_settings(self, request_id: str, **changes: bool) -> Dict[str, Any]:
        intelligence = await self._get_intelligence()
        current = intelligence.suggestions.get_privacy_settings().to_dict()
        current.update(changes)
        intelligence.suggestions.set_privacy_settings(PrivacySettings(**current))
        return intelligence.suggestions.get_privacy_settings().to_dict()

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics in a standardized format."""
        if config.ENABLE_PROMETHEUS_METRICS:
            return {
                "prometheus_metrics": generate_latest(self.registry).decode('utf-8'),
                "format": "prometheus"
            }
        return {
            "metrics": self.metrics,
            "format": "simple"
        }

    def _validate_startup_dependencies(self) -> None:
        """
        Validate startup configuration.

        Raises:
            ConfigurationError: If configuration is missing or invalid
        """
        self.logger.info("Validating startup configuration...")
        config.validate()

        if config.SEMANTIC_BACKEND == 'openai':
            self.logger.info(f"Semantic suggestions via OpenAI model {config.SEMANTIC_MODEL}")
        else:
            self.logger.info(f"Semantic suggestions from static tables: {config.SUGGESTION_TABLES_PATH}")

        if config.STORAGE_BACKEND == 'memory':
            self.logger.warning("Memory storage configured - analytics will not survive a restart")
        else:
            self.logger.info(f"Analytics storage path: {config.STORAGE_PATH}")

    async def run(self) -> None:
        """Run the server on stdio until shutdown is requested."""
        try:
            self.logger.info("Starting Search Intelligence MCP Server...")
            self._setup_signal_handlers()
            self._validate_startup_dependencies()

            from mcp.server.stdio import stdio_server

            async with stdio_server() as (read_stream, write_stream):
                self.logger.info("Server started successfully, listening for MCP requests...")
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options()
                )

        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal, stopping server...")
        except ConfigurationError as e:
            self.logger.error(f"Invalid configuration: {e}")
            raise
        except Exception as e:
            self.logger.error(f"Fatal error in server: {e}")
            raise
        finally:
            if self._intelligence is not None:
                self._intelligence.dispose()
            self.logger.info("Search Intelligence MCP Server shutdown complete")


async def main() -> None:
    await SearchIntelMCPServer().run()


def cli() -> None:
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
