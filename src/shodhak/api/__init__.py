"""
HTTP session API for the research agent.
"""

from .app import create_agent, create_app

__all__ = ["create_agent", "create_app"]
