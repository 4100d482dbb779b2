"""
Job contract shared with the queue infrastructure.

The queue itself (storage, dispatch, retries) lives elsewhere; this module
defines what a job looks like to it: a specification to enqueue, the
de-duplication info used to collapse duplicates, and the outcome a run
reports back.
"""

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class JobStatus(str, Enum):
    SUCCESS = "success"
    SOFT_SKIP = "soft_skip"
    RECOVERABLE_FAILURE = "recoverable_failure"


@dataclass(frozen=True)
class JobOutcome:
    """
    Result of one run. Failures are values, never exceptions: the
    dispatcher decides whether to retry.
    """

    status: JobStatus
    reason: Optional[str] = None
    revisions_processed: int = 0
    notifications_emitted: int = 0
    batch_commits: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (JobStatus.SUCCESS, JobStatus.SOFT_SKIP)

    @property
    def retryable(self) -> bool:
        return self.status is JobStatus.RECOVERABLE_FAILURE

    @classmethod
    def success(cls, revisions: int = 0, notifications: int = 0, commits: int = 0) -> "JobOutcome":
        return cls(JobStatus.SUCCESS, None, revisions, notifications, commits)

    @classmethod
    def soft_skip(cls, reason: str) -> "JobOutcome":
        return cls(JobStatus.SOFT_SKIP, reason)

    @classmethod
    def recoverable_failure(cls, reason: str) -> "JobOutcome":
        return cls(JobStatus.RECOVERABLE_FAILURE, reason)


@dataclass(frozen=True)
class JobSpecification:
    job_type: str
    params: Dict[str, Any]
    remove_duplicates: bool = False
    remove_duplicates_ignore_params: Tuple[str, ...] = field(default_factory=tuple)
    page: Optional[Tuple[int, str]] = None  # (namespace, title) the job is about

    def deduplication_info(self) -> Dict[str, Any]:
        params = {
            k: v for k, v in self.params.items() if k not in self.remove_duplicates_ignore_params
        }
        return {"type": self.job_type, "page": list(self.page) if self.page else None, "params": params}

    def deduplication_key(self) -> Optional[str]:
        """Stable key equal for specs the queue may collapse; None if not de-duplicated."""
        if not self.remove_duplicates:
            return None
        payload = json.dumps(self.deduplication_info(), sort_keys=True, default=str)
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()


class Job:
    """Base class for runnable jobs."""

    job_type = "null"

    def __init__(self, params: Dict[str, Any]):
        self.params = dict(params)
        self.remove_duplicates = False
        self.last_error: Optional[str] = None

    def set_last_error(self, error: str) -> None:
        self.last_error = error

    def get_deduplication_info(self) -> Dict[str, Any]:
        return {"type": self.job_type, "params": dict(self.params)}

    def run(self) -> JobOutcome:
        raise NotImplementedError
