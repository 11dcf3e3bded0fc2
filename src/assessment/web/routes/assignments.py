"""Assignment endpoints: start, submit, grade, collect wrong questions."""

from fastapi import APIRouter, Depends

from assessment.core.assignment_state import start_assignment, submit_assignment
from assessment.core.exam_grader import grade_assignment
from assessment.core.notifications import NotificationSink
from assessment.core.wrong_questions import collect_wrong_questions
from assessment.db.assignments_repository import AssignmentRecord
from assessment.db.database import Database
from assessment.llm.client import LLMClient
from assessment.utils.time_utils import to_iso
from assessment.web.dependencies import get_db, get_llm_client, get_sink
from assessment.web.schemas import (
    AssignmentResponse,
    CollectWrongRequest,
    CollectWrongResponse,
    GradeRequest,
    GradeResponse,
)

router = APIRouter(prefix="/api/assignments", tags=["assignments"])


def _to_response(assignment: AssignmentRecord) -> AssignmentResponse:
    return AssignmentResponse(
        id=assignment.id,
        exam_id=assignment.exam_id,
        user_id=assignment.user_id,
        status=assignment.status,
        is_practice=assignment.is_practice,
        assigned_at=to_iso(assignment.assigned_at),
        start_time=to_iso(assignment.start_time),
        submit_time=to_iso(assignment.submit_time),
        deadline=to_iso(assignment.deadline),
    )


@router.post("/{assignment_id}/start", response_model=AssignmentResponse)
def start(assignment_id: int, db: Database = Depends(get_db)) -> AssignmentResponse:
    """Open an assignment (or resume one already in progress)."""
    return _to_response(start_assignment(db, assignment_id))


@router.post("/{assignment_id}/submit", response_model=AssignmentResponse)
def submit(assignment_id: int, db: Database = Depends(get_db)) -> AssignmentResponse:
    """Hand in an assignment."""
    return _to_response(submit_assignment(db, assignment_id))


@router.post("/{assignment_id}/grade", response_model=GradeResponse)
def grade(
    assignment_id: int,
    request: GradeRequest | None = None,
    db: Database = Depends(get_db),
    sink: NotificationSink = Depends(get_sink),
    client: LLMClient | None = Depends(get_llm_client),
) -> GradeResponse:
    """Grade (or re-grade) a submitted assignment."""
    graded_by = request.graded_by if request is not None else None
    result = grade_assignment(db, assignment_id, client=client, graded_by=graded_by, sink=sink)
    return GradeResponse(**result.to_dict())


@router.post("/{assignment_id}/wrong-questions", response_model=CollectWrongResponse)
def collect_wrong(
    assignment_id: int,
    request: CollectWrongRequest,
    db: Database = Depends(get_db),
) -> CollectWrongResponse:
    """Add the assignment's incorrect answers to a candidate's ledger."""
    result = collect_wrong_questions(db, assignment_id, request.candidate_id)
    return CollectWrongResponse(count=result["count"])
