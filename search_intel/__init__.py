"""
Search Intelligence - Source Package

This package contains the search analytics recorder and the multi-source
suggestion engine, together with the MCP server exposing them.

Modules:
- analytics: Batched search event recording and statistics
- suggestions: Ranked, cached, cancellable autocomplete suggestions
- privacy: Persisted privacy settings gating personalization
- service: Facade wiring every component from configuration
- mcp_server: MCP server exposing the subsystem as tools
"""

__version__ = "0.1.0"

# Export core classes only
from .analytics import SearchAnalytics
from .mcp_server import SearchIntelMCPServer
from .privacy import PrivacySettingsStore
from .service import SearchIntelligence, create_search_intelligence
from .suggestions import SearchSuggestions

__all__ = [
    "SearchAnalytics",
    "SearchIntelMCPServer",
    "PrivacySettingsStore",
    "SearchIntelligence",
    "SearchSuggestions",
    "create_search_intelligence",
]
