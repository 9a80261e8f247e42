"""
Packed Storage Format

Wire layout:
    ┌──────────┬──────────────────────────────────────────────┐
    │ "CMS1"   │ LZ4 frame( msgpack( state document ) )       │
    │ 4 bytes  │ variable                                     │
    └──────────┴──────────────────────────────────────────────┘

The state document is a msgpack map holding the format version, the
storage kind and configuration, the counters, every bucket in order,
the RNG bit-generator state and the synchronization ledger. Floats are
written as float64 so a round trip is bit-exact.

msgpack integers stop at 64 bits; the 128-bit PCG64 state words are
tagged and written as decimal strings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import lz4.frame
import msgpack

from clustermesh.core import constants as C
from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import StorageError
from clustermesh.core.types import (
    ClusteringMethod,
    CompressorMethod,
    Err,
    Ok,
    Result,
    WeightedPoint,
)
from clustermesh.storage.bucket import Bucket
from clustermesh.storage.sync import CompressionEvent, EventKind, StateSnapshot

logger = logging.getLogger(__name__)

_INT64_MIN = -(2 ** 63)
_UINT64_MAX = 2 ** 64 - 1
_BIGINT_TAG = "$bigint"

# Config fields that must agree between a packed payload and its receiver.
# The seed is excluded: the packed RNG state supersedes it.
_SHAPE_FIELDS = (
    "bucket_size",
    "bucket_length",
    "compressed_bucket_size",
    "bicriteria_base_size",
    "forgetting_factor",
    "forgetting_threshold",
)


@dataclass(slots=True)
class PackedState:
    """Everything a storage needs to resume exactly where it was packed."""
    compressor_method: CompressorMethod
    method: ClusteringMethod
    config: StorageConfig
    revision: int
    epoch: int
    dimension: Optional[int]
    buckets: list[Bucket]
    rng_state: Optional[dict[str, Any]]
    base_revision: int
    snapshot: StateSnapshot
    pending: list[WeightedPoint] = field(default_factory=list)
    events: list[CompressionEvent] = field(default_factory=list)


# =============================================================================
# ENCODING
# =============================================================================
def _encode_point(p: WeightedPoint) -> list[Any]:
    return [list(p.data), p.weight, None if p.original is None else list(p.original)]


def _encode_bucket(b: Bucket) -> dict[str, Any]:
    return {
        "epoch": b.created_epoch,
        "compressed": b.compressed,
        "points": [_encode_point(p) for p in b.points],
    }


def _encode_event(e: CompressionEvent) -> dict[str, Any]:
    return {
        "kind": e.kind.value,
        "epoch": e.epoch,
        "digest": e.source_digest,
        "size": e.source_size,
        "weight": e.source_weight,
        "produced": [_encode_point(p) for p in e.produced],
    }


def _encode_bigints(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _encode_bigints(v) for k, v in value.items()}
    if isinstance(value, int) and not isinstance(value, bool):
        if value < _INT64_MIN or value > _UINT64_MAX:
            return {_BIGINT_TAG: str(value)}
    return value


def _encode_snapshot(s: StateSnapshot) -> dict[str, Any]:
    return {
        "buckets": [_encode_bucket(b) for b in s.buckets],
        "epoch": s.epoch,
        "dimension": s.dimension,
        "rng_state": None if s.rng_state is None else _encode_bigints(s.rng_state),
    }


def pack_state(state: PackedState) -> bytes:
    """Serialize a storage state to the framed, compressed wire format."""
    document = {
        "version": C.PACK_FORMAT_VERSION,
        "compressor_method": state.compressor_method.value,
        "method": state.method.value,
        "config": _encode_bigints(state.config.to_dict()),
        "revision": state.revision,
        "epoch": state.epoch,
        "dimension": state.dimension,
        "buckets": [_encode_bucket(b) for b in state.buckets],
        "rng_state": None if state.rng_state is None else _encode_bigints(state.rng_state),
        "ledger": {
            "base_revision": state.base_revision,
            "snapshot": _encode_snapshot(state.snapshot),
            "pending": [_encode_point(p) for p in state.pending],
            "events": [_encode_event(e) for e in state.events],
        },
    }
    body = msgpack.packb(document, use_bin_type=True)
    return C.PACK_MAGIC + lz4.frame.compress(body)


# =============================================================================
# DECODING
# =============================================================================
def _decode_floats(values: Any) -> tuple[float, ...]:
    return tuple(float(v) for v in values)


def _decode_point(raw: Any) -> WeightedPoint:
    data, weight, original = raw
    return WeightedPoint(
        data=_decode_floats(data),
        weight=float(weight),
        original=None if original is None else _decode_floats(original),
    )


def _decode_bucket(raw: dict[str, Any]) -> Bucket:
    return Bucket(
        points=[_decode_point(p) for p in raw["points"]],
        created_epoch=int(raw["epoch"]),
        compressed=bool(raw["compressed"]),
    )


def _decode_event(raw: dict[str, Any]) -> CompressionEvent:
    return CompressionEvent(
        kind=EventKind(raw["kind"]),
        epoch=int(raw["epoch"]),
        source_digest=str(raw["digest"]),
        source_size=int(raw["size"]),
        source_weight=float(raw["weight"]),
        produced=tuple(_decode_point(p) for p in raw["produced"]),
    )


def _decode_bigints(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_BIGINT_TAG}:
            return int(value[_BIGINT_TAG])
        return {k: _decode_bigints(v) for k, v in value.items()}
    return value


def _decode_optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _decode_snapshot(raw: dict[str, Any]) -> StateSnapshot:
    rng_state = raw["rng_state"]
    return StateSnapshot(
        buckets=[_decode_bucket(b) for b in raw["buckets"]],
        epoch=int(raw["epoch"]),
        dimension=_decode_optional_int(raw["dimension"]),
        rng_state=None if rng_state is None else _decode_bigints(rng_state),
    )


def _decode_document(doc: dict[str, Any]) -> Result[PackedState, StorageError]:
    compressor = CompressorMethod.parse(doc["compressor_method"])
    if compressor is None:
        return Err(StorageError.incompatible(
            f"unknown compressor method {doc['compressor_method']!r}"))
    method = ClusteringMethod.parse(doc["method"])
    if method is None:
        return Err(StorageError.incompatible(f"unknown method {doc['method']!r}"))

    config = StorageConfig.from_dict(_decode_bigints(doc["config"]))
    if config.is_err():
        return Err(StorageError.incompatible(f"invalid config: {config.error.message}"))

    ledger = doc["ledger"]
    rng_state = doc["rng_state"]
    return Ok(PackedState(
        compressor_method=compressor,
        method=method,
        config=config.unwrap(),
        revision=int(doc["revision"]),
        epoch=int(doc["epoch"]),
        dimension=_decode_optional_int(doc["dimension"]),
        buckets=[_decode_bucket(b) for b in doc["buckets"]],
        rng_state=None if rng_state is None else _decode_bigints(rng_state),
        base_revision=int(ledger["base_revision"]),
        snapshot=_decode_snapshot(ledger["snapshot"]),
        pending=[_decode_point(p) for p in ledger["pending"]],
        events=[_decode_event(e) for e in ledger["events"]],
    ))


def unpack_state(data: bytes) -> Result[PackedState, StorageError]:
    """
    Parse the wire format back into a PackedState.

    Returns:
        Ok[PackedState]
        Err[StorageError]: corrupted (bad header, undecodable body, missing
            fields) or incompatible (unknown format version or method)
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return Err(StorageError.corrupted(f"expected bytes, got {type(data).__name__}"))
    data = bytes(data)
    if not data.startswith(C.PACK_MAGIC):
        return Err(StorageError.corrupted("bad magic header"))

    try:
        body = lz4.frame.decompress(data[len(C.PACK_MAGIC):])
    except RuntimeError as e:
        return Err(StorageError.corrupted(f"LZ4 frame: {e}"))

    try:
        doc = msgpack.unpackb(body, raw=False, strict_map_key=False)
    except (ValueError, TypeError, msgpack.exceptions.UnpackException) as e:
        return Err(StorageError.corrupted(f"msgpack body: {e}"))

    if not isinstance(doc, dict):
        return Err(StorageError.corrupted("document is not a map"))
    version = doc.get("version")
    if version != C.PACK_FORMAT_VERSION:
        return Err(StorageError.incompatible(f"unsupported format version {version!r}"))

    try:
        return _decode_document(doc)
    except (KeyError, TypeError, ValueError, IndexError) as e:
        logger.debug(f"Packed document failed to decode: {e!r}")
        return Err(StorageError.corrupted(f"malformed document ({type(e).__name__}: {e})"))


def check_compatible(
    state: PackedState,
    compressor_method: CompressorMethod,
    method: ClusteringMethod,
    config: StorageConfig,
) -> Result[PackedState, StorageError]:
    """Reject a payload packed by a differently shaped storage."""
    if state.compressor_method != compressor_method:
        return Err(StorageError.incompatible(
            f"compressor method {state.compressor_method.value!r}, "
            f"expected {compressor_method.value!r}"))
    if state.method != method:
        return Err(StorageError.incompatible(
            f"method {state.method.value!r}, expected {method.value!r}"))
    for name in _SHAPE_FIELDS:
        packed, local = getattr(state.config, name), getattr(config, name)
        if packed != local:
            return Err(StorageError.incompatible(f"config {name}={packed!r}, expected {local!r}"))
    return Ok(state)
