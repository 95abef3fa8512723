"""
Cache Service Report Models

Parses the body of GET /api/cache/metrics/report. Only the fields the load
tester reads are declared; everything else in the payload is ignored.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class RedisMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    hit_rate: float = Field(..., alias="hitRate", ge=0.0, le=1.0)


class ReportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overall_hit_rate: float = Field(..., alias="overallHitRate", ge=0.0, le=1.0)


class ReportPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    redis_metrics: RedisMetrics = Field(..., alias="redisMetrics")
    summary: ReportSummary


class CacheMetricsReport(BaseModel):
    """Metrics report returned by the cache service."""

    model_config = ConfigDict(extra="ignore")

    payload: ReportPayload

    @property
    def redis_hit_rate(self) -> float:
        return self.payload.redis_metrics.hit_rate

    @property
    def overall_hit_rate(self) -> float:
        return self.payload.summary.overall_hit_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "redis_hit_rate": self.redis_hit_rate,
            "overall_hit_rate": self.overall_hit_rate,
            "payload": self.payload.model_dump(by_alias=True),
        }
