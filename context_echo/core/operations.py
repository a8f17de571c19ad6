"""Memory operations: add, query and summarize over a user's graph."""

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from .exceptions import InvalidArgumentError
from .persistence import GraphStore
from .types import Entity, Fact, GraphSummary, KnowledgeGraph, Relation
from .utils import contains, format_fact_line, translate_validation_error, validate_user_id

logger = logging.getLogger(__name__)


def parse_item(model: type[BaseModel], value: Any, name: str) -> BaseModel | None:
    """Validate an optional item argument. None means 'not supplied'."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidArgumentError(f"{name} must be an object")
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise translate_validation_error(e, prefix=name) from e


class MemoryService:
    """The three memory operations. Each one starts from GraphStore.load."""

    def __init__(self, store: GraphStore):
        self.store = store

    async def add(
        self,
        user_id: str,
        entity: dict | None = None,
        relation: dict | None = None,
        fact: dict | None = None,
    ) -> int:
        """
        Append the supplied items in entity -> relation -> fact order.

        Every item is validated before the store is touched. Saves only if
        something was appended. Returns the number of items appended.
        """
        validate_user_id(user_id)
        items = [
            parse_item(Entity, entity, "entity"),
            parse_item(Relation, relation, "relation"),
            parse_item(Fact, fact, "fact"),
        ]

        async with self.store.lock(user_id):
            graph = await self.store.load(user_id)

            added = 0
            for item, sequence in zip(items, (graph.entities, graph.relations, graph.facts)):
                if item is not None:
                    sequence.append(item)
                    added += 1

            if added:
                await self.store.save(user_id, graph)
                logger.info(f"Added {added} items to memory for user {user_id}")

        return added

    async def query(self, user_id: str, query: str) -> KnowledgeGraph:
        """Case-insensitive substring match across names, types, endpoints and content."""
        validate_user_id(user_id)
        if not isinstance(query, str):
            raise InvalidArgumentError("query is required and must be a string")

        graph = await self.store.load(user_id)
        needle = query.lower()

        return KnowledgeGraph(
            entities=[e for e in graph.entities if contains(needle, e.name, e.type)],
            relations=[r for r in graph.relations if contains(needle, r.source, r.target, r.type)],
            facts=[f for f in graph.facts if contains(needle, f.content)],
        )

    async def summarize(self, user_id: str) -> GraphSummary:
        validate_user_id(user_id)
        graph = await self.store.load(user_id)

        return GraphSummary(
            user_id=user_id,
            entity_count=len(graph.entities),
            relation_count=len(graph.relations),
            fact_count=len(graph.facts),
            fact_lines=[format_fact_line(f) for f in graph.facts],
        )
