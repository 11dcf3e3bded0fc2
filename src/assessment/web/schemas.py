"""Pydantic schemas for the web API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str


# =============================================================================
# ASSIGNMENT SCHEMAS
# =============================================================================


class AssignmentResponse(BaseModel):
    """An assignment and its lifecycle timestamps."""

    id: int
    exam_id: int
    user_id: int
    status: str
    is_practice: bool
    assigned_at: str
    start_time: str | None = None
    submit_time: str | None = None
    deadline: str | None = None


class GradeRequest(BaseModel):
    """Request body for grading an assignment."""

    graded_by: int | None = Field(default=None, description="Grader user ID; omit for automatic grading")


class QuestionDetailResponse(BaseModel):
    """Grade of one question."""

    question_id: int
    question_type: str
    answer: str
    is_correct: bool
    score: int
    max_score: int
    ai_evaluation: dict[str, Any] | None = None
    degraded: bool = False


class GradeResponse(BaseModel):
    """Result of grading an assignment."""

    assignment_id: int
    exam_id: int
    user_id: int
    total_score: int
    max_score: int
    percentage: int = Field(..., ge=0, le=100)
    passed: bool
    graded_at: str
    details: list[QuestionDetailResponse]
    makeup_exam_id: int | None = None
    degraded_count: int = 0


class CollectWrongRequest(BaseModel):
    """Request body for collecting wrong questions."""

    candidate_id: int


class CollectWrongResponse(BaseModel):
    """Number of wrong questions recorded."""

    count: int


# =============================================================================
# MAKEUP SCHEMAS
# =============================================================================


class ScheduleMakeupRequest(BaseModel):
    """Request body for scheduling a makeup attempt."""

    deadline: datetime
    notes: str | None = Field(default=None, max_length=2000)
    scheduled_by: int | None = None


class ScheduleMakeupResponse(BaseModel):
    """The assignment issued for a makeup attempt."""

    makeup_id: int
    assignment_id: int


# =============================================================================
# SWEEP SCHEMAS
# =============================================================================


class ReminderSweepResponse(BaseModel):
    """Result of a reminder sweep."""

    sent: int


class OverdueSweepResponse(BaseModel):
    """Result of an overdue sweep."""

    marked: int
    makeups_created: int


class ExpireSweepResponse(BaseModel):
    """Result of a makeup expiry sweep."""

    expired: int
