"""Tool configuration loader for the search intelligence MCP server."""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from mcp.types import Tool


class ToolConfigLoader:
    """Loads tool definitions and their input schemas from tools.yaml."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize the tool config loader.

        Args:
            config_path: Path to the tools.yaml file
        """
        if config_path is None:
            config_path = Path(__file__).parent / "tools.yaml"
        self.config_path = Path(config_path)
        self._tools_config: Optional[Dict[str, Any]] = None

    def load_tools_config(self) -> Dict[str, Any]:
        """Load tools configuration from YAML file (cached after first read)."""
        if self._tools_config is None:
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    self._tools_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise RuntimeError(f"Failed to load tools config from {self.config_path}: {e}")
        return self._tools_config

    def tool_names(self) -> List[str]:
        """Names of every configured tool, in file order."""
        return list(self.load_tools_config().get("tools", {}).keys())

    def get_tool_definitions(self) -> List[Tool]:
        """Get tool definitions as MCP Tool objects."""
        tools = []
        for tool_name, tool_config in self.load_tools_config().get("tools", {}).items():
            tools.append(Tool(
                name=tool_name,
                description=tool_config.get("description", ""),
                inputSchema=tool_config.get("inputSchema", {"type": "object"}),
            ))
        return tools

    def get_tool_schema(self, tool_name: str) -> Dict[str, Any]:
        """Get the input schema for a specific tool."""
        tools = self.load_tools_config().get("tools", {})
        if tool_name not in tools:
            raise ValueError(f"Tool '{tool_name}' not found in configuration")
        return tools[tool_name].get("inputSchema", {"type": "object"})
