# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Agent Context Lifecycle - skeleton cache and import graph MCP server."""

from .cache import LRUCache, SkeletonCache, compute_fingerprint
from .config import Config, ConfigurationError
from .graph import ImportGraph, edge_score
from .mapper import SkeletonMapper
from .models import ImportEdge, ImportType, Skeleton
from .service import ContextService
from .storage import ContextDatabase, StoreError

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConfigurationError",
    "ContextDatabase",
    "ContextService",
    "ImportEdge",
    "ImportGraph",
    "ImportType",
    "LRUCache",
    "Skeleton",
    "SkeletonCache",
    "SkeletonMapper",
    "StoreError",
    "compute_fingerprint",
    "edge_score",
]
