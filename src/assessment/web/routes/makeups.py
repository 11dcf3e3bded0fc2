"""Makeup-exam endpoints."""

from fastapi import APIRouter, Depends

from assessment.core.makeup_workflow import schedule_makeup
from assessment.core.notifications import NotificationSink
from assessment.db.database import Database
from assessment.web.dependencies import get_db, get_sink
from assessment.web.schemas import ScheduleMakeupRequest, ScheduleMakeupResponse

router = APIRouter(prefix="/api/makeups", tags=["makeups"])


@router.post("/{makeup_id}/schedule", response_model=ScheduleMakeupResponse)
def schedule(
    makeup_id: int,
    request: ScheduleMakeupRequest,
    db: Database = Depends(get_db),
    sink: NotificationSink = Depends(get_sink),
) -> ScheduleMakeupResponse:
    """Issue the next makeup attempt as a new assignment."""
    result = schedule_makeup(
        db,
        makeup_id,
        request.deadline,
        notes=request.notes,
        scheduled_by=request.scheduled_by,
        sink=sink,
    )
    return ScheduleMakeupResponse(makeup_id=makeup_id, assignment_id=result["assignment_id"])
