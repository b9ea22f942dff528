"""
app/api/reminders.py

Purpose: Operator endpoints for the reminder engine

- Trigger a reminder cycle on demand
- Send a single test reminder
- Inspect, start, stop and reconfigure the scheduler
"""

from fastapi import APIRouter, Depends
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import get_reminder_service, get_scheduler
from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.schemas.response import ERROR_RESPONSES
from app.schemas.reminder import (
    ReminderConfig,
    ReminderResult,
    ReminderRun,
    ReminderTestRequest,
    SchedulerConfigUpdate,
    SchedulerStats
)

logger = get_logger(__name__)
router = APIRouter(prefix="/reminders", responses=ERROR_RESPONSES)


@router.post("/run", response_model=ReminderRun)
async def run_reminders(scheduler=Depends(get_scheduler)):
    """
    Runs one reminder cycle now (waits for any cycle already running).
    """
    logger.info("Manual reminder cycle requested")
    return await scheduler.run_now()


@router.post("/test", response_model=ReminderResult)
async def send_test_reminder(
    request: ReminderTestRequest,
    reminder_service=Depends(get_reminder_service)
):
    """
    Sends one reminder for a placement, ignoring the send windows.
    """
    return await reminder_service.send_test_reminder(
        request.job_id,
        request.associate_id,
        request.reminder_type
    )


@router.get("/scheduler", response_model=SchedulerStats)
async def scheduler_stats(scheduler=Depends(get_scheduler)):
    return scheduler.get_stats()


@router.get("/scheduler/config", response_model=ReminderConfig)
async def scheduler_config(scheduler=Depends(get_scheduler)):
    return scheduler.get_config()


@router.put("/scheduler/config", response_model=ReminderConfig)
async def update_scheduler_config(
    update: SchedulerConfigUpdate,
    scheduler=Depends(get_scheduler)
):
    changes = update.model_dump(exclude_none=True)
    try:
        return scheduler.update_config(**changes)
    except PydanticValidationError as e:
        raise ValidationError("Invalid scheduler config", details=e.errors(include_url=False))


@router.post("/scheduler/start", response_model=SchedulerStats)
async def start_scheduler(scheduler=Depends(get_scheduler)):
    scheduler.start()
    return scheduler.get_stats()


@router.post("/scheduler/stop", response_model=SchedulerStats)
async def stop_scheduler(scheduler=Depends(get_scheduler)):
    scheduler.stop()
    return scheduler.get_stats()
