from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from dailybatch.errors import SubmissionError
from dailybatch.models import JobRecord, JobType, PostDraft, WorkUnit
from dailybatch.services.prompts import blog_request_body, translation_request_body
from dailybatch.services.storage import JobCacheStore

logger = logging.getLogger(__name__)

BodyBuilder = Callable[[WorkUnit, str], dict[str, Any]]

BODY_BUILDERS: dict[str, BodyBuilder] = {
    "blog": blog_request_body,
    "translation": translation_request_body,
}


class BatchSubmitter:
    """Turns a list of work units into one cached, externally running batch job."""

    def __init__(self, store: JobCacheStore, client: Any, work_dir: Path, endpoint: str, model: str):
        self.store = store
        self.client = client
        self.work_dir = Path(work_dir)
        self.endpoint = endpoint
        self.model = model

    def build_rows(self, units: list[WorkUnit], job_type: JobType) -> list[dict[str, Any]]:
        builder = BODY_BUILDERS[job_type]
        return [
            {
                "custom_id": unit.correlation_id(job_type),
                "method": "POST",
                "url": self.endpoint,
                "body": builder(unit, self.model),
            }
            for unit in units
        ]

    def write_artifact(self, rows: list[dict[str, Any]], job_type: JobType) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        path = self.work_dir / f"daily-summary-{job_type}-batch-{int(time.time() * 1000)}.jsonl"
        path.write_text("\n".join(json.dumps(row, ensure_ascii=False) for row in rows), encoding="utf-8")
        return path

    @staticmethod
    def validate_artifact(path: Path) -> int:
        lines = [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        if not lines:
            raise SubmissionError(f"batch artifact {path.name} is empty")
        try:
            json.loads(lines[0])
        except ValueError as exc:
            raise SubmissionError(f"batch artifact {path.name}: first line is not valid JSON") from exc
        return len(lines)

    def submit(
        self,
        units: list[WorkUnit],
        job_type: JobType,
        display_name: str,
        source_job_id: str | None = None,
        results_by_unit: dict[int, PostDraft] | None = None,
    ) -> str:
        if not units:
            raise SubmissionError(f"refusing to submit an empty {job_type} batch")
        if not self.endpoint:
            raise SubmissionError("completion endpoint is not configured")

        artifact: Path | None = None
        try:
            artifact = self.write_artifact(self.build_rows(units, job_type), job_type)
            line_count = self.validate_artifact(artifact)
            logger.info(
                "%s batch artifact %s: %d requests, %.2f KB",
                job_type,
                artifact.name,
                line_count,
                artifact.stat().st_size / 1024,
            )
            job_id = self.client.submit(artifact, self.endpoint, display_name)
            self.store.append(
                JobRecord(
                    job_id=job_id,
                    job_type=job_type,
                    status="pending",
                    display_name=display_name,
                    groups=units,
                    aux_file_path=str(artifact),
                    results_by_unit=results_by_unit or {},
                    source_job_id=source_job_id,
                )
            )
        except Exception:
            if artifact is not None:
                artifact.unlink(missing_ok=True)
            raise

        logger.info("Created %s batch job %s (%s)", job_type, job_id, display_name)
        return job_id
