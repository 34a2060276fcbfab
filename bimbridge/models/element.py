"""Element references and the model-to-elements map.

An element is only addressable as the pair (model id, local id); local ids
repeat across models.  Every bulk operation takes and returns a
``ModelIdMap``: an ordered mapping from model id to local ids.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from bimbridge.errors import MalformedInputError
from bimbridge.models.base import WireModel

ModelIdMap = dict[str, list[int]]


class ElementRef(BaseModel):
    """One element within a loaded model."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    local_id: int = Field(ge=0)


class ElementInfo(WireModel):
    """Attributes and property sets of one element, as reported by the viewer."""

    local_id: int
    name: Any = None
    global_id: Any = None
    category: str | None = None
    object_type: Any = None
    property_sets: dict[str, dict[str, Any]] = Field(default_factory=dict)
    property_sets_raw: list[Any] | None = None


def normalize_model_map(raw: Any) -> ModelIdMap:
    """Validate *raw* as a model-to-elements map and return a clean copy.

    Models with an empty or missing id collection are dropped.  Anything that
    is not a mapping of string ids to non-negative integers raises
    :class:`MalformedInputError`.
    """
    if raw is None:
        raise MalformedInputError("No local ids were provided")
    if not isinstance(raw, Mapping):
        raise MalformedInputError(
            f"Model id map must be a mapping, got {type(raw).__name__}"
        )

    result: ModelIdMap = {}
    for model_id, ids in raw.items():
        if not isinstance(model_id, str):
            raise MalformedInputError(f"Model id must be a string: {model_id!r}")
        if not ids:
            continue
        if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
            raise MalformedInputError(
                f"Local ids for model '{model_id}' must be a list of integers"
            )
        clean: list[int] = []
        for local_id in ids:
            if isinstance(local_id, bool) or not isinstance(local_id, int) or local_id < 0:
                raise MalformedInputError(
                    f"Invalid local id {local_id!r} for model '{model_id}'"
                )
            clean.append(local_id)
        result[model_id] = clean
    return result


def count_elements(model_map: Mapping[str, Iterable[int]]) -> int:
    """Total number of local ids across every model."""
    return sum(len(list(ids)) for ids in model_map.values())


def iter_refs(model_map: Mapping[str, Iterable[int]]) -> Iterator[ElementRef]:
    """Yield one :class:`ElementRef` per (model, local id) pair in map order."""
    for model_id, ids in model_map.items():
        for local_id in ids:
            yield ElementRef(model_id=model_id, local_id=local_id)


def to_serializable_map(model_map: Mapping[str, Iterable[int]]) -> ModelIdMap:
    """Convert set-valued maps (index results) to sorted lists for the wire."""
    return {model_id: sorted(ids) for model_id, ids in model_map.items()}
