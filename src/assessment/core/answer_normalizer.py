"""Answer normalization for objective questions.

Every objective answer is reduced to a sorted list of case-folded tokens:

- true_false / multiple_choice: a single token
- multiple_answer: split on the delimiter, one token per selected option

Two answers match iff their normalized token lists are identical, so
multi-answer comparison ignores order and case but gives no partial credit.
"""

from __future__ import annotations

from typing import Iterable

OBJECTIVE_TYPES = frozenset({"true_false", "multiple_choice", "multiple_answer"})


def _normalize_token(token: str) -> str:
    return token.strip().casefold()


def normalize_answer(
    answer: str | Iterable[str] | None,
    question_type: str,
    delimiter: str = ",",
) -> list[str]:
    """Canonicalize an objective answer into a sorted token list.

    Args:
        answer: Raw answer text, or an already split list of options
        question_type: Question type; only multiple_answer is split
        delimiter: Separator between selected options

    Returns:
        Sorted list of non-empty tokens (empty list for a blank answer)
    """
    if answer is None:
        return []

    if isinstance(answer, str):
        if question_type == "multiple_answer":
            raw_tokens = answer.split(delimiter)
        else:
            raw_tokens = [answer]
    else:
        raw_tokens = list(answer)

    tokens = [_normalize_token(t) for t in raw_tokens]
    return sorted(t for t in tokens if t)


def answers_match(
    given: str | Iterable[str] | None,
    expected: str | Iterable[str],
    question_type: str,
    delimiter: str = ",",
) -> bool:
    """Whether a candidate answer equals the canonical answer after normalization."""
    given_tokens = normalize_answer(given, question_type, delimiter)
    if not given_tokens:
        return False
    return given_tokens == normalize_answer(expected, question_type, delimiter)
