"""
System-Wide Constants for the Clustering Storage Engine

All configuration defaults and wire-format markers centralized here.
"""

from typing import Final

# =============================================================================
# BUCKET GEOMETRY
# =============================================================================
DEFAULT_BUCKET_SIZE: Final[int] = 1000
DEFAULT_BUCKET_LENGTH: Final[int] = 2
DEFAULT_COMPRESSED_BUCKET_SIZE: Final[int] = 100
DEFAULT_BICRITERIA_BASE_SIZE: Final[int] = 2

# =============================================================================
# FORGETTING
# =============================================================================
DEFAULT_FORGETTING_FACTOR: Final[float] = 1.0     # 1.0 = never decay
DEFAULT_FORGETTING_THRESHOLD: Final[float] = 0.05

# =============================================================================
# POINTS
# =============================================================================
DEFAULT_POINT_WEIGHT: Final[float] = 1.0

# =============================================================================
# SERIALIZATION
# =============================================================================
PACK_MAGIC: Final[bytes] = b"CMS1"
PACK_FORMAT_VERSION: Final[int] = 1

# =============================================================================
# ENVIRONMENT
# =============================================================================
ENV_PREFIX: Final[str] = "CLUSTERMESH_"
