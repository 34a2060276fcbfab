"""Controller side: operations over the viewer channel and the process entry point."""

from bimbridge.controller.client import BimController, ToolResult

__all__ = ["BimController", "ToolResult"]
