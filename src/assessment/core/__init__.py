"""Core assessment logic.

Modules:
- answer_normalizer: canonical forms for objective answers
- grader: objective and subjective question graders
- exam_grader: assignment grading orchestrator
- assignment_state: assignment lifecycle state machine
- makeup_workflow: makeup exams and learning recommendations
- wrong_questions: per-candidate wrong-question ledger
- scheduler: reminder, overdue and deadline sweeps
- notifications: notice payloads and sinks
- manual_grading: human score corrections
"""

__all__ = [
    "answer_normalizer",
    "grader",
    "exam_grader",
    "assignment_state",
    "makeup_workflow",
    "wrong_questions",
    "scheduler",
    "notifications",
    "manual_grading",
]
