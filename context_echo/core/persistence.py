"""Per-user graph persistence with atomic writes."""

import asyncio
import json
import logging
import os
import uuid
import weakref
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import anyio.to_thread
from pydantic import ValidationError

from .constants import RECORD_SUFFIX
from .exceptions import CorruptStateError, SchemaValidationError, StorageFailureError
from .types import KnowledgeGraph
from .utils import field_path, translate_validation_error, validate_user_id

logger = logging.getLogger(__name__)


class GraphStore:
    """
    Loads and saves one user's knowledge graph as a single JSON record.

    Layout: <root>/<user_id>.json. A missing record is an empty graph;
    a record that fails validation is never repaired or truncated.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        # Entries vanish once no caller holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def path_for(self, user_id: str) -> Path:
        """Record path for a user. Raises InvalidArgumentError for unsafe ids."""
        validate_user_id(user_id)
        return self.root / f"{user_id}{RECORD_SUFFIX}"

    def lock(self, user_id: str) -> asyncio.Lock:
        """Mutual-exclusion section for load -> mutate -> save on one user."""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def lock_count(self) -> int:
        """Number of users with a lock currently in use."""
        return len(self._locks)

    # ========================================================================
    # Load
    # ========================================================================

    async def load(self, user_id: str) -> KnowledgeGraph:
        path = self.path_for(user_id)
        raw = await anyio.to_thread.run_sync(self._read, user_id, path)

        if raw is None:
            logger.debug(f"No stored memory for user {user_id}, starting empty graph")
            return KnowledgeGraph()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptStateError(user_id, f"invalid JSON ({e})") from e

        try:
            graph = KnowledgeGraph.model_validate(data)
        except ValidationError as e:
            detail = translate_validation_error(e).message
            raise CorruptStateError(user_id, detail) from e

        logger.debug(
            f"Loaded graph for {user_id}: {len(graph.entities)} entities, "
            f"{len(graph.relations)} relations, {len(graph.facts)} facts"
        )
        return graph

    @staticmethod
    def _read(user_id: str, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageFailureError(user_id, str(e)) from e

    # ========================================================================
    # Save
    # ========================================================================

    async def save(self, user_id: str, graph: KnowledgeGraph | Mapping[str, Any]) -> None:
        """
        Validate and atomically replace the user's record.

        Raises SchemaValidationError (nothing written) or StorageFailureError.
        """
        path = self.path_for(user_id)
        validated = self.validate(graph)
        payload = json.dumps(validated.model_dump(mode="json", exclude_none=True), indent=2)
        await anyio.to_thread.run_sync(self._write, user_id, path, payload)
        logger.debug(f"Saved graph for {user_id} to {path}")

    @staticmethod
    def validate(graph: KnowledgeGraph | Mapping[str, Any]) -> KnowledgeGraph:
        """Re-validate a graph, including ones built without validation."""
        if isinstance(graph, KnowledgeGraph):
            graph = graph.model_dump()
        try:
            return KnowledgeGraph.model_validate(graph)
        except ValidationError as e:
            first = e.errors()[0]
            raise SchemaValidationError(field_path("", first["loc"]), first["msg"]) from e

    @staticmethod
    def _write(user_id: str, path: Path, payload: str) -> None:
        temp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename (POSIX guarantees atomicity)
            temp_path.replace(path)

        except OSError as e:
            logger.error(f"Failed to save graph to {path}: {e}")
            if temp_path.exists():
                temp_path.unlink()
            raise StorageFailureError(user_id, str(e)) from e
