"""Core memory graph components."""

from .types import Entity, Relation, Fact, KnowledgeGraph, GraphSummary
from .constants import *
from .exceptions import *
from .persistence import GraphStore
from .operations import MemoryService
from .utils import validate_user_id, format_fact_line, translate_validation_error

__all__ = [
    # Types
    "Entity",
    "Relation",
    "Fact",
    "KnowledgeGraph",
    "GraphSummary",
    # Constants
    "DEFAULT_MEMORY_DIR",
    "FALLBACK_SESSION_ID",
    "SESSION_ID_HEADER",
    "SESSION_ID_QUERY_PARAM",
    "SESSION_CAPACITY",
    "EVICTION_INTERVAL_SECONDS",
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "TOOL_ADD",
    "TOOL_QUERY",
    "TOOL_SUMMARIZE",
    "TOOLS",
    # Exceptions
    "KGError",
    "InvalidArgumentError",
    "SchemaValidationError",
    "CorruptStateError",
    "StorageFailureError",
    "UnknownOperationError",
    "SessionHandshakeError",
    "SessionEvictedError",
    # Classes
    "GraphStore",
    "MemoryService",
    # Utils
    "validate_user_id",
    "format_fact_line",
    "translate_validation_error",
]
