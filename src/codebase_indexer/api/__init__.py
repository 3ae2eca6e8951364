"""Codebase Indexer API.

Provides a REST API over the project manager.
"""

from codebase_indexer.api.dependencies import get_manager, set_manager
from codebase_indexer.api.router import api_router

__all__ = [
    "api_router",
    "get_manager",
    "set_manager",
]
