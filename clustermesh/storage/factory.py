"""
Storage Factory

Builds a storage from configuration strings, the shape in which they
arrive from config files and other services:

    create_storage("shard-0", "kmeans", "compressive", {"bucket_size": 500})
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from clustermesh.core.config import StorageConfig
from clustermesh.core.errors import ClusteringError, UnsupportedMethod
from clustermesh.core.types import (
    ClusteringMethod,
    CompressorMethod,
    Err,
    Ok,
    Result,
)
from clustermesh.observability.metrics import MetricsCollector
from clustermesh.storage.compressive import CompressiveStorage
from clustermesh.storage.protocols import ClusteringStorage
from clustermesh.storage.simple import SimpleStorage

logger = logging.getLogger(__name__)

ConfigLike = Union[StorageConfig, Mapping[str, Any], None]


def create_storage(
    name: str,
    method: Union[str, ClusteringMethod],
    compressor_method: Union[str, CompressorMethod],
    config: ConfigLike = None,
    collector: Optional[MetricsCollector] = None,
) -> Result[ClusteringStorage, ClusteringError]:
    """
    Create a storage variant by name.

    Args:
        name: Storage identifier, used as the metrics label
        method: "kmeans" or "gmm"
        compressor_method: "simple" or "compressive"
        config: StorageConfig, plain mapping, or None for defaults
        collector: Metrics registry (process-wide singleton if None)

    Returns:
        Ok[ClusteringStorage]
        Err[UnsupportedMethod]: unknown method or compressor name
        Err[InvalidParameter]: config fails validation
    """
    parsed_method = _parse(ClusteringMethod, method)
    if parsed_method is None:
        return Err(UnsupportedMethod.of(str(method)))
    parsed_compressor = _parse(CompressorMethod, compressor_method)
    if parsed_compressor is None:
        return Err(UnsupportedMethod.of(str(compressor_method)))

    if isinstance(config, StorageConfig):
        validated = config.validate()
    else:
        validated = StorageConfig.from_dict(config or {})
    if validated.is_err():
        return validated
    cfg = validated.unwrap()

    if parsed_compressor == CompressorMethod.COMPRESSIVE:
        storage: ClusteringStorage = CompressiveStorage(name, parsed_method, cfg, collector)
    else:
        storage = SimpleStorage(name, parsed_method, cfg, collector)

    logger.info(
        f"Created {parsed_compressor.value} storage '{name}' "
        f"(method={parsed_method.value}, bucket_size={cfg.bucket_size})"
    )
    return Ok(storage)


def _parse(enum_cls: Any, value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        return enum_cls.parse(value)
    return None


class StorageFactory:
    """
    Class-level spelling of create_storage.

    Usage:
        result = StorageFactory.create("shard-0", "gmm", "compressive", config)
    """

    @classmethod
    def create(
        cls,
        name: str,
        method: Union[str, ClusteringMethod],
        compressor_method: Union[str, CompressorMethod],
        config: ConfigLike = None,
        collector: Optional[MetricsCollector] = None,
    ) -> Result[ClusteringStorage, ClusteringError]:
        return create_storage(name, method, compressor_method, config, collector)

    @staticmethod
    def supported_methods() -> list[str]:
        return [m.value for m in ClusteringMethod]

    @staticmethod
    def supported_compressors() -> list[str]:
        return [m.value for m in CompressorMethod]
