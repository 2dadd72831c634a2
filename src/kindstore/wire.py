"""Pydantic models for transport responses.

Transports return plain JSON-shaped dicts; these models validate them before
the request layer reads them, so a malformed response fails in one place.
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from kindstore.errors import TransportError
from kindstore.query import MoreResults


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EntityResult(WireModel):
    entity: dict[str, Any]
    version: str | None = None
    cursor: str | None = None


class LookupResponse(WireModel):
    found: list[EntityResult] = Field(default_factory=list)
    missing: list[EntityResult] = Field(default_factory=list)
    deferred: list[dict[str, Any]] = Field(default_factory=list)


class QueryResultBatch(WireModel):
    entity_results: list[EntityResult] = Field(default_factory=list, alias="entityResults")
    entity_result_type: str | None = Field(default=None, alias="entityResultType")
    end_cursor: str | None = Field(default=None, alias="endCursor")
    more_results: MoreResults = Field(alias="moreResults")
    skipped_results: int = Field(default=0, alias="skippedResults")


class RunQueryResponse(WireModel):
    batch: QueryResultBatch


class WireMutationResult(WireModel):
    key: dict[str, Any] | None = None
    version: str | None = None
    conflict_detected: bool = Field(default=False, alias="conflictDetected")
    error: dict[str, Any] | None = None


class CommitWireResponse(WireModel):
    mutation_results: list[WireMutationResult] = Field(
        default_factory=list, alias="mutationResults"
    )
    index_updates: int = Field(default=0, alias="indexUpdates")


class BeginTransactionResponse(WireModel):
    transaction: str


class AllocateIdsResponse(WireModel):
    keys: list[dict[str, Any]] = Field(default_factory=list)


class RollbackResponse(WireModel):
    pass


M = TypeVar("M", bound=WireModel)


def parse_response(model: type[M], method: str, payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise TransportError(method, f"Malformed response: {e}") from e
