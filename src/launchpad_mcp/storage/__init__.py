"""Storage abstractions for Launchpad MCP."""

from .chroma import RUN_RESET_EVENT, ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import RunRecord

__all__ = [
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "RUN_RESET_EVENT",
    "RunRecord",
]
