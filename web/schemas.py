"""
Pydantic response models for API endpoints.

Provides type-safe response models with automatic validation and documentation.
"""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class StoreStats(BaseModel):
    """DuckDB store statistics."""
    status: str
    latency_ms: Optional[float] = None
    orders: Optional[int] = None
    refunds: Optional[int] = None
    payouts: Optional[int] = None
    fee_lines: Optional[int] = None
    sync_runs: Optional[int] = None


class SchedulerStatus(BaseModel):
    """Background sync scheduler status."""
    started: bool = Field(description="Whether the interval job is registered")
    in_progress: bool = Field(description="Whether a sync run is executing right now")
    next_run: Optional[str] = Field(None, description="Next scheduled run (ISO format)")
    interval_hours: float = Field(description="Hours between scheduled runs")
    cooldown_remaining_seconds: int = Field(0, description="Seconds until a manual sync is allowed")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    store: StoreStats
    scheduler: Optional[SchedulerStatus] = Field(None, description="Background sync scheduler status")


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC
# ═══════════════════════════════════════════════════════════════════════════════

class SyncTriggerResponse(BaseModel):
    """Answer to a manual sync request."""
    ok: bool
    message: str
    retry_after_seconds: Optional[int] = Field(None, description="Wait before retrying (cooldown only)")


class SyncRunResponse(BaseModel):
    """One sync run from the audit trail."""
    id: int
    platform: str
    status: str = Field(description="RUNNING, SUCCESS or FAILED")
    started_at: datetime
    finished_at: Optional[datetime] = None
    orders_upserted: int = 0
    payouts_synced: int = 0
    fee_lines_upserted: int = 0
    error_summary: Optional[str] = None


class SyncRunsResponse(BaseModel):
    """Recent sync runs, newest first."""
    runs: List[SyncRunResponse]
    count: int


# ═══════════════════════════════════════════════════════════════════════════════
# WEBHOOKS
# ═══════════════════════════════════════════════════════════════════════════════

class WebhookAck(BaseModel):
    """Acknowledgement for a verified webhook delivery."""
    ok: bool = True
    topic: Optional[str] = None
