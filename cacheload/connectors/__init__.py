"""
Connectors to the system under test.
"""

from cacheload.connectors.cache_api import (
    BATCH_USERS_PATH,
    HOTDATA_PATH,
    METRICS_REPORT_PATH,
    PRODUCT_PATH,
    USER_PATH,
    WARMUP_PATH,
    CacheApiClient,
)

__all__ = [
    "CacheApiClient",
    "WARMUP_PATH",
    "USER_PATH",
    "PRODUCT_PATH",
    "HOTDATA_PATH",
    "BATCH_USERS_PATH",
    "METRICS_REPORT_PATH",
]
