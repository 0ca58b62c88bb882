"""Hybrid intent routing and verified evidence assembly."""

from .config import RetrievalConfig, RouterConfig
from .service import InstructionBundle, RoutingService

__all__ = ["InstructionBundle", "RetrievalConfig", "RouterConfig", "RoutingService"]
