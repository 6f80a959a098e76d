"""Connector binding administration: credentials, config resolution, lifecycle sync."""

from typing import Any

__all__ = ["binding_router"]


def __getattr__(name: str) -> Any:
    """Lazily load the HTTP router so core modules import without FastAPI wiring."""
    if name == "binding_router":
        from connadmin.router import binding_router

        return binding_router
    raise AttributeError(f"module 'connadmin' has no attribute '{name}'")
