"""HTTP surface for the image agent."""

from image_agent.web.server import create_app, run_server

__all__ = ["create_app", "run_server"]
