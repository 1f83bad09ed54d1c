"""HTTP transport for the ledger (FastAPI app factory + SSE event stream)."""

from .app import create_app

__all__ = ["create_app"]
