"""Batch sweep endpoints, for schedulers that trigger over HTTP."""

from fastapi import APIRouter, Depends

from assessment.core.makeup_workflow import expire_makeups
from assessment.core.notifications import NotificationSink
from assessment.core.scheduler import run_overdue_sweep, run_reminder_sweep
from assessment.db.database import Database
from assessment.web.dependencies import get_db, get_sink
from assessment.web.schemas import ExpireSweepResponse, OverdueSweepResponse, ReminderSweepResponse

router = APIRouter(prefix="/api/sweeps", tags=["sweeps"])


@router.post("/reminders", response_model=ReminderSweepResponse)
def reminders(db: Database = Depends(get_db), sink: NotificationSink = Depends(get_sink)) -> ReminderSweepResponse:
    """Send due deadline reminders."""
    return ReminderSweepResponse(**run_reminder_sweep(db, sink=sink))


@router.post("/overdue", response_model=OverdueSweepResponse)
def overdue(db: Database = Depends(get_db), sink: NotificationSink = Depends(get_sink)) -> OverdueSweepResponse:
    """Mark overdue assignments and open makeups for them."""
    return OverdueSweepResponse(**run_overdue_sweep(db, sink=sink))


@router.post("/makeup-expiry", response_model=ExpireSweepResponse)
def makeup_expiry(db: Database = Depends(get_db), sink: NotificationSink = Depends(get_sink)) -> ExpireSweepResponse:
    """Expire scheduled makeups past their deadline."""
    return ExpireSweepResponse(**expire_makeups(db, sink=sink))
