"""HTTP API for Jumanji Ledger."""

from .server import app, create_app, run

__all__ = ["app", "create_app", "run"]
