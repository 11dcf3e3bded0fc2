"""Error taxonomy for the assessment engine.

- NotFoundError: a referenced record does not exist
- InvalidTransitionError: a lifecycle rule was violated
- ExternalUnavailableError: the store or notification sink is unreachable

A subjective answer the language model could not grade is not an error:
it is reported through the `degraded` flag of the grade result.
"""

from __future__ import annotations


class AssessmentError(Exception):
    """Base error for the assessment engine."""

    pass


class NotFoundError(AssessmentError):
    """Raised when an assignment, exam, question or makeup record is missing."""

    def __init__(self, entity: str, entity_id: int | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(AssessmentError):
    """Raised when an operation is not allowed in the current state."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class AssignmentOverdueError(InvalidTransitionError):
    """Raised when a candidate tries to start an assignment past its deadline."""

    def __init__(self, assignment_id: int, deadline: str):
        self.assignment_id = assignment_id
        self.deadline = deadline
        super().__init__(
            f"Assignment {assignment_id} is overdue (deadline {deadline}) and cannot be started"
        )


class MakeupAttemptsExceededError(InvalidTransitionError):
    """Raised when scheduling a makeup would exceed the allowed attempts."""

    def __init__(self, makeup_id: int, makeup_count: int, max_attempts: int):
        self.makeup_id = makeup_id
        self.makeup_count = makeup_count
        self.max_attempts = max_attempts
        super().__init__(
            f"Makeup {makeup_id} exceeded the maximum number of attempts "
            f"({makeup_count} > {max_attempts})"
        )


class UnsupportedQuestionTypeError(AssessmentError):
    """Raised when a question has a type no grader handles."""

    def __init__(self, question_id: int, question_type: str):
        self.question_id = question_id
        self.question_type = question_type
        super().__init__(f"Unknown question type for question {question_id}: {question_type}")


class ExternalUnavailableError(AssessmentError):
    """Raised when the store or the notification sink cannot be reached."""

    pass
