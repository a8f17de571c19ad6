"""Type definitions for the memory graph."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Entity(BaseModel):
    """Named thing in a user's graph. Identity is by name; duplicates allowed."""
    name: str = Field(..., min_length=1, strict=True, description="The name of the entity")
    type: str = Field(..., min_length=1, strict=True, description="The type of the entity (e.g., Person, Organization, Project)")
    metadata: dict[str, Any] | None = Field(None, description="Additional metadata for the entity")


class Relation(BaseModel):
    """Directed, typed edge between two entity names."""
    source: str = Field(..., strict=True, description="The name of the source entity")
    target: str = Field(..., strict=True, description="The name of the target entity")
    type: str = Field(..., strict=True, description="The type of the relation (e.g., worksAt, memberOf, locatedIn)")
    weight: float | None = Field(None, strict=True, description="The weight or strength of the relation (0.0 to 1.0)")


class Fact(BaseModel):
    """Factual statement with a confidence score and the time it was recorded."""
    content: str = Field(..., min_length=1, strict=True, description="The factual statement")
    confidence: float = Field(..., ge=0.0, le=1.0, strict=True, description="Confidence score for the fact (0.0 to 1.0)")
    timestamp: str = Field(..., strict=True, description="ISO timestamp when the fact was recorded")

    @field_validator("timestamp")
    @classmethod
    def _check_iso_timestamp(cls, value: str) -> str:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"'{value}' is not an ISO-8601 timestamp") from None
        return value

    def recorded_at(self) -> datetime:
        """Timestamp as an aware datetime in the server's local time zone."""
        return datetime.fromisoformat(self.timestamp).astimezone()


class KnowledgeGraph(BaseModel):
    """One user's memory. Insertion order is the only ordering guarantee."""
    entities: list[Entity] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)
    facts: list[Fact] = Field(default_factory=list)


class GraphSummary(BaseModel):
    """Counts plus one formatted line per fact."""
    user_id: str
    entity_count: int
    relation_count: int
    fact_count: int
    fact_lines: list[str]

    def to_text(self) -> str:
        return "\n".join([
            f"Knowledge Graph Summary for User: {self.user_id}",
            f"- Entities: {self.entity_count}",
            f"- Relations: {self.relation_count}",
            f"- Facts: {self.fact_count}",
            "",
            "Facts recorded:",
            *self.fact_lines,
        ])
