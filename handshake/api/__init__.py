"""HTTP surface for recorders and counterparties."""

from handshake.api.app import create_app, create_default_app
from handshake.api.routes import router

__all__ = ["create_app", "create_default_app", "router"]
