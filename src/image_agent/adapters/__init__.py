"""
Model gateways.

``ModelGateway`` is the provider-neutral interface the orchestrator drives;
``OpenAIGateway`` talks to any OpenAI-compatible chat completions endpoint.
"""

from image_agent.adapters.base import ChatOptions, ModelGateway, ModelResponse, collect_stream
from image_agent.adapters.openai import OpenAIGateway

__all__ = ["ChatOptions", "ModelGateway", "ModelResponse", "OpenAIGateway", "collect_stream"]
