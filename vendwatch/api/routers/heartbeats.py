"""
Heartbeats Router

- Heartbeat ingestion from machines
- Live status snapshot
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...common.exceptions import NotFoundError
from ...common.timestamp import to_epoch_ms
from ...monitor import MonitorController
from ..dependencies import get_controller

router = APIRouter()


# ============================================
# SCHEMAS
# ============================================

class HeartbeatIn(BaseModel):
    """Heartbeat sent by a machine."""
    timestamp: Optional[float] = None  # epoch ms; server time when omitted
    metrics: Optional[dict[str, Any]] = None


class HeartbeatOut(BaseModel):
    machine_id: str
    last_seen_at: Optional[float]
    status: str
    metrics: dict[str, Any]


class LiveStatusOut(BaseModel):
    status: str
    last_seen_at: Optional[float]
    is_offline: bool


# ============================================
# ENDPOINTS
# ============================================

@router.post("/{machine_id}", response_model=HeartbeatOut)
async def ingest_heartbeat(
    machine_id: str,
    heartbeat: HeartbeatIn,
    controller: MonitorController = Depends(get_controller),
):
    """
    Record a heartbeat for a registered machine.

    Sets last_seen_at, marks the machine online and replaces its metrics
    when given. Live status subscribers are notified immediately.
    """
    if await controller.registry.get(machine_id) is None:
        raise NotFoundError("machine", machine_id)

    seen_at = heartbeat.timestamp
    if seen_at is None:
        seen_at = to_epoch_ms(controller.clock())

    record = await controller.heartbeats.record_heartbeat(machine_id, seen_at, heartbeat.metrics)
    return HeartbeatOut(
        machine_id=record.machine_id,
        last_seen_at=record.last_seen_at,
        status=record.status,
        metrics=record.metrics,
    )


@router.get("/live", response_model=dict[str, LiveStatusOut])
async def live_status(controller: MonitorController = Depends(get_controller)):
    """Current live status of every machine that has a heartbeat record."""
    return {
        machine_id: entry.to_dict()
        for machine_id, entry in controller.publisher.snapshot().items()
    }
