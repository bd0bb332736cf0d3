"""Admission control for the vector store.

Parent chunks exist only to give a retrieved child its surrounding
context; they are never indexed. :class:`ChunkGate` enforces that rule
for every write, and :func:`sanitize_metadata` flattens metadata into
the scalar values vector databases accept.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from enum import Enum
from typing import Any

from hierarchical_rag.ingestion.models import ChunkKind
from hierarchical_rag.retrieval.models import GateRejection, GateResult

logger = logging.getLogger(__name__)

PARENT_REJECTION = (
    "Parent chunk detected - parent chunks are kept for context and never stored in the vector store"
)

_STRATEGY_KINDS = {
    "parent_hierarchical": ChunkKind.PARENT,
    "child_hierarchical": ChunkKind.CHILD,
    "basic": ChunkKind.BASIC,
    "flat": ChunkKind.BASIC,
}

PASSTHROUGH_KEYS = frozenset({"source", "chunk_id", "parent_id", "chunk_type", "version"})


def resolve_chunk_kind(metadata: Mapping[str, Any]) -> ChunkKind | str | None:
    """Classify a record from its metadata.

    Returns the :class:`ChunkKind`, the raw label when it is not a known
    kind, or ``None`` when the record carries no kind at all.
    """
    strategy = metadata.get("chunking_strategy")
    if strategy == "parent_hierarchical":
        return ChunkKind.PARENT

    raw = metadata.get("chunk_type")
    if raw is not None:
        if isinstance(raw, ChunkKind):
            return raw
        try:
            return ChunkKind(str(raw).lower())
        except ValueError:
            return str(raw)

    if strategy is None:
        return None
    return _STRATEGY_KINDS.get(str(strategy).lower(), str(strategy))


class ChunkGate:
    """Accept child, basic and unmarked chunks; reject parents and unknown kinds."""

    def validate(self, metadatas: Sequence[Mapping[str, Any]]) -> GateResult:
        result = GateResult()
        for index, metadata in enumerate(metadatas):
            kind = resolve_chunk_kind(metadata or {})
            match kind:
                case None | ChunkKind.CHILD | ChunkKind.BASIC:
                    result.accepted.append(index)
                case ChunkKind.PARENT:
                    result.rejected.append(
                        GateRejection(index=index, chunk_type=kind.value, reason=PARENT_REJECTION)
                    )
                case str():
                    result.rejected.append(
                        GateRejection(index=index, chunk_type=kind, reason=f"Unknown chunk type: {kind}")
                    )

        if result.rejected:
            logger.warning(
                "Chunk validation: %d/%d chunks rejected", len(result.rejected), result.total
            )
            for rejection in result.rejected:
                logger.debug("  index %d (%s): %s", rejection.index, rejection.chunk_type, rejection.reason)
        return result


def _coerce(value: Any) -> str | int | float | bool | None:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return _coerce(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        if isinstance(value, (set, frozenset)):
            value = sorted(value, key=str)
        return json.dumps(value, default=str, sort_keys=isinstance(value, Mapping))
    return str(value)


def sanitize_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return a copy of *metadata* holding only string/number/bool/null values.

    Identity keys (``source``, ``chunk_id``, ``parent_id``, ``chunk_type``,
    ``version``) are copied as-is.
    """
    if not metadata:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if key in PASSTHROUGH_KEYS:
            cleaned[key] = value.value if isinstance(value, Enum) else value
        else:
            cleaned[key] = _coerce(value)
    return cleaned
