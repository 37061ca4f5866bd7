"""
Tagged decoders for upstream response bodies.

Platform APIs wrap their payloads in zero, one or two ``data`` envelopes and
name their collections inconsistently. Every response is decoded exactly once
into a DecodedPayload whose ``shape`` tells the caller what it got:

    COLLECTION  a non-empty list of records
    RECORD      a single record (object)
    EMPTY       structurally valid but nothing in it
    MALFORMED   none of the probed layers had a known shape
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

ENVELOPE_KEY: str = "data"
MAX_ENVELOPE_DEPTH: int = 2

# Keys that identify an object as a record rather than a ``data`` envelope
RECORD_IDENTITY_KEYS: tuple[str, ...] = ("id", "projectId", "project_id", "key")

# Child collections that hold backlog items inside a sprint record
EMBEDDED_CHILD_KEYS: tuple[str, ...] = ("backlog_items", "backlogs", "items")


class PayloadShape(str, Enum):
    COLLECTION = "collection"
    RECORD = "record"
    EMPTY = "empty"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class DecodedPayload:
    shape: PayloadShape
    items: list[dict[str, Any]] = field(default_factory=list)
    record: dict[str, Any] | None = None
    depth: int = 0


EMPTY_PAYLOAD = DecodedPayload(PayloadShape.EMPTY)
MALFORMED_PAYLOAD = DecodedPayload(PayloadShape.MALFORMED)


def envelope_layers(payload: Any) -> list[Any]:
    """``payload``, ``payload.data``, ``payload.data.data`` as far as they exist."""
    layers: list[Any] = [payload]
    current = payload
    for _ in range(MAX_ENVELOPE_DEPTH):
        if not isinstance(current, dict) or ENVELOPE_KEY not in current:
            break
        current = current[ENVELOPE_KEY]
        layers.append(current)
    return layers


def _collection_in(layer: Any, collection_keys: Iterable[str]) -> list[Any] | None:
    if isinstance(layer, list):
        return layer
    if isinstance(layer, dict):
        for key in ("items", *collection_keys):
            value = layer.get(key)
            if isinstance(value, list):
                return value
    return None


def decode_collection(payload: Any, collection_keys: Iterable[str] = ()) -> DecodedPayload:
    """Decode a list response; the shallowest layer with a collection wins."""
    if payload is None or payload == "":
        return EMPTY_PAYLOAD

    keys = tuple(collection_keys)
    for depth, layer in enumerate(envelope_layers(payload)):
        values = _collection_in(layer, keys)
        if values is None:
            continue
        if not values:
            return DecodedPayload(PayloadShape.EMPTY, depth=depth)
        records = [value for value in values if isinstance(value, dict)]
        if not records:
            return DecodedPayload(PayloadShape.MALFORMED, depth=depth)
        return DecodedPayload(PayloadShape.COLLECTION, items=records, depth=depth)

    return MALFORMED_PAYLOAD


def _is_envelope(layer: dict[str, Any]) -> bool:
    inner = layer.get(ENVELOPE_KEY)
    if not isinstance(inner, (dict, list)):
        return False
    return not any(key in layer for key in RECORD_IDENTITY_KEYS)


def decode_record(payload: Any) -> DecodedPayload:
    """Decode a single-object response, unwrapping ``data`` envelopes."""
    if payload is None or payload == "":
        return EMPTY_PAYLOAD

    for depth, layer in enumerate(envelope_layers(payload)):
        if isinstance(layer, dict):
            if _is_envelope(layer) and depth < MAX_ENVELOPE_DEPTH:
                continue
            if not layer:
                return DecodedPayload(PayloadShape.EMPTY, depth=depth)
            return DecodedPayload(PayloadShape.RECORD, record=layer, depth=depth)
        if isinstance(layer, list):
            records = [value for value in layer if isinstance(value, dict)]
            if records:
                return DecodedPayload(PayloadShape.RECORD, record=records[0], depth=depth)
            return DecodedPayload(PayloadShape.EMPTY, depth=depth)
        break

    return MALFORMED_PAYLOAD


def extract_embedded(
    parents: list[dict[str, Any]],
    child_keys: Iterable[str] = EMBEDDED_CHILD_KEYS,
    parent_ref_key: str = "sprint_id",
) -> list[dict[str, Any]]:
    """
    Flatten child records nested inside parent records.

    For each parent the first child key holding a non-empty list is used.
    Children inherit the parent's id under ``parent_ref_key`` unless they
    already carry one.
    """
    keys = tuple(child_keys)
    flattened: list[dict[str, Any]] = []
    for parent in parents:
        for key in keys:
            children = parent.get(key)
            if not isinstance(children, list) or not children:
                continue
            for child in children:
                if not isinstance(child, dict):
                    continue
                entry = dict(child)
                if parent.get("id") is not None and entry.get(parent_ref_key) is None:
                    entry[parent_ref_key] = parent["id"]
                flattened.append(entry)
            break
    return flattened
