"""Domain models for indexing, filtering and search results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

GLOBAL_TENANT_TYPES = frozenset({"global", "anonymous"})


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"source"``, ``"chunk_type"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    # -- evaluation for stores without a query language ----------------------

    def matches(self, metadata: dict[str, Any]) -> bool:
        actual = metadata.get(self.field)
        match self.operator:
            case "eq":
                return actual == self.value
            case "ne":
                return actual != self.value
            case "in":
                return actual in self.value
            case "nin":
                return actual not in self.value
            case "gt" | "gte" | "lt" | "lte":
                if actual is None:
                    return False
                try:
                    if self.operator == "gt":
                        return actual > self.value
                    if self.operator == "gte":
                        return actual >= self.value
                    if self.operator == "lt":
                        return actual < self.value
                    return actual <= self.value
                except TypeError:
                    return False
            case _:
                raise ValueError(f"Unsupported filter operator: {self.operator!r}")


class Tenant(BaseModel):
    """Owner of indexed records.

    ``global`` and ``anonymous`` tenants, by id or by type, see (and write)
    unscoped data.
    """

    id: str | None = None
    type: str = "user"

    @property
    def is_global(self) -> bool:
        return (
            self.id is None
            or self.id in GLOBAL_TENANT_TYPES
            or self.type in GLOBAL_TENANT_TYPES
        )

    def filters(self) -> list[MetadataFilter]:
        if self.is_global:
            return []
        return [
            MetadataFilter.equals("tenant_id", self.id),
            MetadataFilter.equals("tenant_type", self.type),
        ]


class StoredRecord(BaseModel):
    """A record as held by a vector-store backend."""

    id: str
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    embedding: list[float] | None = None


class SearchHit(BaseModel):
    """A single ranked search result.

    ``score`` is cosine similarity (higher = more similar) and
    ``distance`` is ``1 - score``.
    """

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float
    distance: float

    @classmethod
    def from_score(
        cls, id: str, content: str, metadata: dict[str, Any], score: float
    ) -> SearchHit:
        return cls(id=id, content=content, metadata=metadata, score=score, distance=1.0 - score)

    def short_ref(self) -> str:
        """Return a compact ``[source§chunk]`` reference string."""
        source = self.metadata.get("source", "unknown")
        chunk = self.metadata.get("chunk_index", "?")
        return f"[{source}§{chunk}]"


class GateRejection(BaseModel):
    index: int
    chunk_type: str | None = None
    reason: str


class GateResult(BaseModel):
    accepted: list[int] = Field(default_factory=list)
    rejected: list[GateRejection] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.accepted) + len(self.rejected)


class AddResult(BaseModel):
    """Outcome of :meth:`SimilarityIndex.add_documents`."""

    stored: list[str] = Field(default_factory=list)
    rejections: list[GateRejection] = Field(default_factory=list)

    @property
    def rejected(self) -> int:
        return len(self.rejections)
