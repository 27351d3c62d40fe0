"""
Monitor Router

- Controller status
- Manual cycle trigger
- Runtime offline thresholds
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ...monitor import MonitorController
from ..dependencies import get_controller

router = APIRouter()


class ThresholdsUpdate(BaseModel):
    """Offline thresholds in seconds; omitted values are kept."""
    default_offline_s: Optional[float] = None
    critical_offline_s: Optional[float] = None


@router.get("/status")
async def monitor_status(controller: MonitorController = Depends(get_controller)):
    return controller.status()


@router.post("/run")
async def run_monitor(controller: MonitorController = Depends(get_controller)):
    """Run one detector cycle and one cleaning cycle immediately."""
    detector_stats, cleaning_stats = await controller.run_once()
    return {
        "detector": detector_stats.to_dict(),
        "cleaning": cleaning_stats.to_dict(),
    }


@router.put("/thresholds")
async def update_thresholds(
    update: ThresholdsUpdate,
    controller: MonitorController = Depends(get_controller),
):
    """
    Change the offline thresholds used by detection and live status.

    Returns 400 when a value is not positive or critical is below default.
    """
    return controller.configure_thresholds(
        default_offline_s=update.default_offline_s,
        critical_offline_s=update.critical_offline_s,
    )
