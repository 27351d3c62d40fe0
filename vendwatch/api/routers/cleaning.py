"""
Cleaning Router

- Record a cleaning (cleaning mode activated on a machine)
- Fleet cleaning statistics
"""

from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ...monitor import MonitorController
from ..dependencies import get_controller

router = APIRouter()


class CleaningEntryResponse(BaseModel):
    id: str
    machine_id: str
    machine_type: str
    timestamp: datetime


class CleaningStatsResponse(BaseModel):
    total_machines: int
    machines_needing_cleaning: int
    overdue_machines: int
    average_days_since_cleaning: int


@router.get("/stats", response_model=CleaningStatsResponse)
async def cleaning_stats(controller: MonitorController = Depends(get_controller)):
    stats = await controller.cleaning.statistics()
    return stats.to_dict()


@router.post("/{machine_id}", response_model=CleaningEntryResponse, status_code=status.HTTP_201_CREATED)
async def record_cleaning(machine_id: str, controller: MonitorController = Depends(get_controller)):
    """Log a cleaning for the machine. Existing cleaning alarms stay open."""
    entry = await controller.cleaning.record_cleaning(machine_id)
    return CleaningEntryResponse(
        id=entry.id,
        machine_id=entry.machine_id,
        machine_type=entry.machine_type,
        timestamp=entry.timestamp,
    )
