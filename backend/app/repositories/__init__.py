"""Repository abstractions for database interactions."""

from .contest_repository import ContestRepository
from .submission_repository import SubmissionRepository

__all__ = [
    "ContestRepository",
    "SubmissionRepository",
]
