# src/eviction/completion.py — v1
"""Grading completion rules for an owner.

An owner's cached documents are only useful while some of their
submissions still need a grader. Once every submission is graded and no
staged grade waits to be pushed, the owner's cache can be released.

A submission counts as graded when:
  - it carries a rubric score, or
  - it carries an upstream grade that is not an auto-graded zero,
and it has no staged grade still waiting to be pushed.

An auto-graded zero is the placeholder the course system assigns to late
work: the submission is late (flagged, or submitted after the due date),
its grade or score is 0, and nobody has scored it with the rubric or
staged a grade for it yet.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, field_validator


class SubmissionState(BaseModel):
    """Grading-relevant view of one submission."""

    submission_id: str
    grade: str | None = None
    score: float | None = None
    late: bool = False
    submitted_at: datetime | None = None
    due_at: datetime | None = None
    has_rubric_score: bool = False
    has_staged_grade: bool = False

    @field_validator("submission_id", mode="before")
    @classmethod
    def _coerce_id(cls, v: object) -> object:
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def is_late(self) -> bool:
        if self.late:
            return True
        if self.submitted_at is None or self.due_at is None:
            return False
        return self.submitted_at > self.due_at


def _is_zero(value: str | float | None) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        try:
            return float(value.strip()) == 0
        except ValueError:
            return False
    return value == 0


def is_auto_graded_zero(submission: SubmissionState) -> bool:
    """True for a late zero that no grader has touched yet."""
    if submission.has_rubric_score or submission.has_staged_grade:
        return False
    if not submission.is_late:
        return False
    return _is_zero(submission.grade) or _is_zero(submission.score)


def is_graded(submission: SubmissionState) -> bool:
    if submission.has_staged_grade:
        return False  # pending push
    if submission.has_rubric_score:
        return True
    has_grade = submission.grade not in (None, "") or submission.score is not None
    return has_grade and not is_auto_graded_zero(submission)


def owner_is_complete(
    submissions: Iterable[SubmissionState], staged_pending: int = 0
) -> bool:
    """Every submission graded and nothing left to push upstream."""
    if staged_pending > 0:
        return False
    return all(is_graded(s) for s in submissions)
