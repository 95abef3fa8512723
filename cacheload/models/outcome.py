"""
Run Outcome Models

Defines the per-request Outcome record and the final RunResult payload.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

# Status recorded when no HTTP response was received (timeout, connection failure).
NO_RESPONSE_STATUS = 0


class RunStatus(str, Enum):
    """Run execution status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of one request execution. Immutable once produced."""

    pattern: str
    status: int
    latency_ms: float
    success: bool
    tags: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def responded(self) -> bool:
        return self.status != NO_RESPONSE_STATUS


class RunResult(BaseModel):
    """
    Final summary payload of a run.

    Contains aggregated metrics, the threshold verdict and the service's own
    cache report when it could be fetched.
    """

    # Identification
    run_id: UUID = Field(default_factory=uuid4, description="Unique run ID")
    plan_name: str = Field(..., description="Plan that was executed")
    base_url: str = Field(..., description="Cache service base URL")

    # Execution metadata
    status: RunStatus = Field(..., description="Run status")
    start_time: datetime = Field(..., description="Run start time")
    end_time: Optional[datetime] = Field(None, description="Run end time")
    duration_seconds: Optional[float] = Field(
        None, description="Scenario execution time (seconds)"
    )
    peak_workers: int = Field(0, description="Highest concurrent worker count")

    # Results
    metrics: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Metric summaries by name"
    )
    thresholds_passed: bool = Field(False, description="All thresholds passed")
    thresholds: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-threshold results"
    )

    # Cache service reports
    baseline_report: Optional[Dict[str, Any]] = Field(
        None, description="Metrics report captured after setup"
    )
    cache_report: Optional[Dict[str, Any]] = Field(
        None, description="Metrics report captured at teardown"
    )

    # Errors and exit
    failure_reason: Optional[str] = Field(
        None, description="Reason for run failure (setup errors)"
    )
    exit_code: int = Field(0, description="Process exit status")

    class Config:
        use_enum_values = True
