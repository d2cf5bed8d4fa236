"""
Job lifecycle state for asynchronous runs.

Handles:
- Job creation (status `queued`)
- Partial updates (status, result, error) with `updated_at` refresh
- Job status queries for polling

State is in-memory and lives for the process lifetime. Mutations contain no awaits,
so they are atomic relative to other tasks on the event loop.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

JobStatus = Literal["queued", "running", "done", "error"]

TERMINAL_STATUSES = frozenset({"done", "error"})
_STATUS_RANK = {"queued": 0, "running": 1, "done": 2, "error": 2}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobRecord(BaseModel):
    id: str
    status: JobStatus = "queued"
    created_at: str
    updated_at: str
    result: Any = None
    error: Optional[str] = None


class JobRegistry:
    def __init__(self) -> None:
        self._jobs: Dict[str, JobRecord] = {}

    def create(self) -> str:
        job_id = uuid.uuid4().hex
        now = _now_iso()
        self._jobs[job_id] = JobRecord(id=job_id, status="queued", created_at=now, updated_at=now)
        logger.info("Created job %s", job_id)
        return job_id

    def update(self, job_id: str, **fields: Any) -> None:
        """
        Merge `fields` into the job and refresh `updated_at`. Unknown ids are ignored.

        Status only moves forward along queued -> running -> done|error; a status change
        that would move backwards or leave a terminal state is dropped.
        """
        current = self._jobs.get(job_id)
        if current is None:
            return

        fields.pop("id", None)
        fields.pop("created_at", None)
        status = fields.get("status")
        if status is not None and status != current.status:
            if current.status in TERMINAL_STATUSES or _STATUS_RANK.get(status, -1) < _STATUS_RANK[current.status]:
                logger.warning("Job %s ignoring status change %s -> %s", job_id, current.status, status)
                fields.pop("status")

        data = current.model_dump()
        data.update(fields)
        data["updated_at"] = _now_iso()
        self._jobs[job_id] = JobRecord.model_validate(data)

        if "status" in fields:
            error = fields.get("error")
            logger.info("Job %s status -> %s%s", job_id, fields["status"], f" (error: {error})" if error else "")

    def get(self, job_id: str) -> Optional[JobRecord]:
        """Return a snapshot of the job; re-fetch to observe later updates."""
        record = self._jobs.get(job_id)
        return record.model_copy(deep=True) if record is not None else None

    def __len__(self) -> int:
        return len(self._jobs)


__all__ = ["JobRecord", "JobRegistry", "JobStatus", "TERMINAL_STATUSES"]
