from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from dailybatch.errors import DuplicateJobError
from dailybatch.models import ACTIVE_STATUSES, JobRecord

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"job_id", "job_type", "created_at", "groups"})


class JobCacheStore:
    """File-backed store for the in-flight batch jobs.

    The file holds exactly the jobs that still need polling or result
    handling; finished jobs are removed, so it never grows into a history.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> list[JobRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Job cache %s is unreadable, treating as empty: %s", self.path, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Job cache %s does not hold a list, treating as empty", self.path)
            return []

        records: list[JobRecord] = []
        for item in raw:
            try:
                records.append(JobRecord.model_validate(item))
            except ValidationError as exc:
                job_id = item.get("job_id") if isinstance(item, dict) else None
                logger.warning("Skipping invalid cached job %s: %s", job_id, exc.errors()[:3])
        return records

    def save(self, records: Iterable[JobRecord]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        blob = json.dumps(payload, indent=2, ensure_ascii=False)

        parent = self.path.parent if str(self.path.parent) else Path(".")
        parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(blob)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, job_id: str) -> JobRecord | None:
        return next((record for record in self.load() if record.job_id == job_id), None)

    def append(self, record: JobRecord) -> None:
        records = self.load()
        if any(existing.job_id == record.job_id for existing in records):
            raise DuplicateJobError(record.job_id)
        records.append(record)
        self.save(records)

    def remove(self, job_id: str) -> None:
        records = self.load()
        kept = [record for record in records if record.job_id != job_id]
        if len(kept) != len(records):
            self.save(kept)

    def update(self, job_id: str, /, **fields: Any) -> JobRecord | None:
        frozen = IMMUTABLE_FIELDS.intersection(fields)
        if frozen:
            raise ValueError(f"cannot update immutable job fields: {sorted(frozen)}")
        unknown = set(fields).difference(JobRecord.model_fields)
        if unknown:
            raise ValueError(f"unknown job fields: {sorted(unknown)}")

        records = self.load()
        for i, record in enumerate(records):
            if record.job_id != job_id:
                continue
            merged = record.model_dump()
            merged.update(fields)
            records[i] = JobRecord.model_validate(merged)
            self.save(records)
            return records[i]
        # The job may have been removed earlier in the same pass.
        return None

    def find_by_source(self, source_job_id: str, statuses: Iterable[str] = ACTIVE_STATUSES) -> list[JobRecord]:
        wanted = set(statuses)
        return [
            record
            for record in self.load()
            if record.source_job_id == source_job_id and record.status in wanted
        ]
