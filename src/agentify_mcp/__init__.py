"""Agentify MCP: multi-client agent session tracking with task-completion detection."""

__version__ = "0.1.0"

__all__ = ["__version__"]
