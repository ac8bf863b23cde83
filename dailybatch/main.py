from __future__ import annotations

from fastapi import FastAPI, HTTPException

from dailybatch.config import settings
from dailybatch.models import JobRecord
from dailybatch.services.storage import JobCacheStore

app = FastAPI(title="Daily Summary Batch Orchestrator", version="0.1.0")
store = JobCacheStore(settings.cache_file)


@app.get("/health")
@app.get("/healthz")
def healthz() -> dict:
    return {"ok": True, "cache_file": str(store.path), "in_flight": len(store.load())}


@app.get("/jobs", response_model=list[JobRecord])
def list_jobs(job_type: str | None = None) -> list[JobRecord]:
    jobs = store.load()
    if job_type:
        jobs = [job for job in jobs if job.job_type == job_type]
    return jobs


@app.get("/jobs/{job_id}", response_model=JobRecord)
def get_job(job_id: str) -> JobRecord:
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
