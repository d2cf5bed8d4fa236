from __future__ import annotations

from docgen_service.jobs import JobRegistry


def test_create_starts_queued():
    jobs = JobRegistry()
    job_id = jobs.create()
    record = jobs.get(job_id)
    assert record is not None
    assert record.status == "queued"
    assert record.created_at == record.updated_at
    assert record.result is None and record.error is None


def test_update_merges_fields_and_refreshes_updated_at():
    jobs = JobRegistry()
    job_id = jobs.create()
    created = jobs.get(job_id)
    jobs.update(job_id, status="running")
    jobs.update(job_id, status="done", result={"title": "x"})
    record = jobs.get(job_id)
    assert record.status == "done"
    assert record.result == {"title": "x"}
    assert record.created_at == created.created_at
    assert record.updated_at >= created.updated_at


def test_terminal_status_is_never_resurrected():
    jobs = JobRegistry()
    job_id = jobs.create()
    jobs.update(job_id, status="running")
    jobs.update(job_id, status="error", error="boom")
    jobs.update(job_id, status="running")
    jobs.update(job_id, status="queued", result={"late": True})
    jobs.update(job_id, status="done")
    record = jobs.get(job_id)
    assert record.status == "error"
    assert record.error == "boom"
    # Non-status fields of a dropped transition still merge.
    assert record.result == {"late": True}


def test_unknown_job_update_is_a_no_op():
    jobs = JobRegistry()
    jobs.update("missing", status="done")
    assert jobs.get("missing") is None
    assert len(jobs) == 0


def test_get_returns_a_snapshot():
    jobs = JobRegistry()
    job_id = jobs.create()
    snapshot = jobs.get(job_id)
    jobs.update(job_id, status="running")
    assert snapshot.status == "queued"
    assert jobs.get(job_id).status == "running"
