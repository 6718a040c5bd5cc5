"""Tool registry, executor and the built-in image tool catalog."""
from __future__ import annotations

from image_agent.tools.catalog import create_default_registry, remote_handler
from image_agent.tools.executor import ToolExecutor
from image_agent.tools.references import ImageRef, artifact_key, parse_ref, resolve_ref, uploaded_key
from image_agent.tools.registry import RegisteredTool, ToolRegistry

__all__ = [
    "ToolRegistry",
    "RegisteredTool",
    "ToolExecutor",
    "ImageRef",
    "parse_ref",
    "resolve_ref",
    "artifact_key",
    "uploaded_key",
    "create_default_registry",
    "remote_handler",
]
