"""
Alarms Router

Handles machine alarms:
- Alarm queries and filtering
- Acknowledgment and resolution workflow
- Deletion and purging
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from ...common.config import AlarmKind, AlarmStatus, Severity
from ...monitor import MonitorController
from ..dependencies import get_controller

router = APIRouter()


# ============================================
# SCHEMAS
# ============================================

class AlarmAcknowledge(BaseModel):
    """Acknowledge alarm request."""
    acknowledged_by: str


class AlarmResponse(BaseModel):
    """Alarm response."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    machine_id: str
    kind: str
    severity: str
    message: str
    status: str
    created_at: Optional[datetime]
    acknowledged_at: Optional[datetime]
    acknowledged_by: Optional[str]
    resolved_at: Optional[datetime]
    metadata: dict[str, Any]


class AlarmStats(BaseModel):
    total: int
    active: int
    acknowledged: int
    resolved: int
    by_severity: dict[str, int]
    by_kind: dict[str, int]


class PurgeResponse(BaseModel):
    deleted: int
    failed: int


def _check_choice(name: str, value: Optional[str], enum_cls) -> None:
    allowed = [member.value for member in enum_cls]
    if value is not None and value not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {name}. Must be one of: {allowed}",
        )


# ============================================
# ENDPOINTS - QUERIES
# ============================================

@router.get("", response_model=list[AlarmResponse])
async def list_alarms(
    machine_id: Optional[str] = Query(None, description="Filter by machine"),
    alarm_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    kind: Optional[str] = Query(None, description="Filter by alarm kind"),
    severity: Optional[str] = Query(None, description="Filter by severity"),
    limit: int = Query(100, ge=1, le=1000),
    controller: MonitorController = Depends(get_controller),
):
    """List alarms, newest first."""
    _check_choice("status", alarm_status, AlarmStatus)
    _check_choice("kind", kind, AlarmKind)
    _check_choice("severity", severity, Severity)

    alarms = await controller.engine.list_alarms(
        machine_id=machine_id,
        status=alarm_status,
        kind=kind,
        severity=severity,
        limit=limit,
    )
    return [AlarmResponse.model_validate(a) for a in alarms]


@router.get("/stats", response_model=AlarmStats)
async def alarm_stats(controller: MonitorController = Depends(get_controller)):
    """Alarm counts by status, severity and kind."""
    stats = await controller.engine.statistics()
    return stats.to_dict()


# ============================================
# ENDPOINTS - CLEANUP
# ============================================

@router.post("/purge/resolved", response_model=PurgeResponse)
async def purge_resolved(controller: MonitorController = Depends(get_controller)):
    """Delete every resolved alarm."""
    result = await controller.engine.purge_resolved()
    return result.to_dict()


@router.post("/purge/older-than", response_model=PurgeResponse)
async def purge_older_than(
    days: int = Query(..., ge=0, description="Delete alarms created more than this many days ago"),
    controller: MonitorController = Depends(get_controller),
):
    """Delete alarms of any status older than the given number of days."""
    result = await controller.engine.purge_older_than(days)
    return result.to_dict()


# ============================================
# ENDPOINTS - SINGLE ALARM
# ============================================

@router.get("/{alarm_id}", response_model=AlarmResponse)
async def get_alarm(alarm_id: str, controller: MonitorController = Depends(get_controller)):
    alarm = await controller.engine.get(alarm_id)
    return AlarmResponse.model_validate(alarm)


@router.post("/{alarm_id}/acknowledge", response_model=AlarmResponse)
async def acknowledge_alarm(
    alarm_id: str,
    body: AlarmAcknowledge,
    controller: MonitorController = Depends(get_controller),
):
    """
    Acknowledge an active alarm.

    Returns 409 if the alarm is already acknowledged or resolved.
    """
    alarm = await controller.engine.acknowledge(alarm_id, body.acknowledged_by)
    return AlarmResponse.model_validate(alarm)


@router.post("/{alarm_id}/resolve", response_model=AlarmResponse)
async def resolve_alarm(alarm_id: str, controller: MonitorController = Depends(get_controller)):
    """Resolve an active or acknowledged alarm."""
    alarm = await controller.engine.resolve(alarm_id)
    return AlarmResponse.model_validate(alarm)


@router.delete("/{alarm_id}")
async def delete_alarm(alarm_id: str, controller: MonitorController = Depends(get_controller)):
    await controller.engine.delete(alarm_id)
    return {"deleted": alarm_id}
