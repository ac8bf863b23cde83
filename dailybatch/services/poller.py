from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from dailybatch.models import ACTIVE_STATUSES, JobRecord, JobStatus
from dailybatch.services.gemini import state_name
from dailybatch.services.handlers import ResultHandlers
from dailybatch.services.notifier import report_exception, timestamp
from dailybatch.services.storage import JobCacheStore

logger = logging.getLogger(__name__)

COMPLETION_STATUS_MAP: dict[str, JobStatus] = {
    "completed": "completed",
    "failed": "failed",
    "cancelled": "failed",
    "cancelling": "failed",
    "expired": "failed",
    "validating": "processing",
    "in_progress": "processing",
    "finalizing": "processing",
}

IMAGE_STATUS_MAP: dict[str, JobStatus] = {
    "SUCCEEDED": "completed",
    "PARTIALLY_SUCCEEDED": "completed",
    "FAILED": "failed",
    "CANCELLED": "failed",
    "EXPIRED": "failed",
    "PENDING": "processing",
    "QUEUED": "processing",
    "RUNNING": "processing",
}


def map_completion_status(status: str | None) -> JobStatus:
    return COMPLETION_STATUS_MAP.get((status or "").lower(), "processing")


def map_image_status(state: str | None) -> JobStatus:
    return IMAGE_STATUS_MAP.get(state_name(state), "processing")


def delete_artifact(job: JobRecord) -> None:
    if job.aux_file_path:
        Path(job.aux_file_path).unlink(missing_ok=True)


class BatchPoller:
    """One bounded pass over every in-flight job; waiting happens between scheduler ticks."""

    def __init__(
        self,
        store: JobCacheStore,
        completion_client: Any,
        image_client: Any | None,
        handlers: ResultHandlers,
        notifier: Any,
        max_handler_attempts: int = 3,
    ):
        self.store = store
        self.completion_client = completion_client
        self.image_client = image_client
        self.handlers = handlers
        self.notifier = notifier
        self.max_handler_attempts = max(1, max_handler_attempts)

    def poll_once(self) -> None:
        jobs = self.store.load()
        active = [job for job in jobs if job.status in ACTIVE_STATUSES]
        awaiting = [job for job in jobs if job.status == "completed" and job.derived_job_id]
        if not active and not awaiting:
            return
        logger.info("Checking %d batch jobs and %d thumbnail batches", len(active), len(awaiting))

        for job in active:
            self._poll_primary(job)

        # Re-read: the first pass may have created or finished parents.
        for job in self.store.load():
            if job.status == "completed" and job.derived_job_id:
                self._poll_derived(job)

    def _poll_primary(self, job: JobRecord) -> None:
        try:
            external = self.completion_client.get_status(job.job_id)
        except Exception as exc:
            # transient: the next tick asks again
            report_exception(self.notifier, exc, "BatchPoller.poll_primary", {"job_id": job.job_id})
            return

        status = map_completion_status(external)
        logger.info("%s job %s: %s -> %s", job.job_type, job.job_id, external, status)

        if status == "processing":
            if job.status != "processing":
                self.store.update(job.job_id, status="processing")
            return

        if status == "failed":
            logger.error("%s job %s failed remotely: %s", job.job_type, job.job_id, external)
            self._send_failure_alert(job, external)
            self._drop(job)
            return

        try:
            finished = self.handlers.handle_completed(job)
        except Exception as exc:
            self._handler_failed(job, exc)
            return

        if finished:
            self._send_success_alert(job)
            self._drop(job)

    def _poll_derived(self, job: JobRecord) -> None:
        try:
            if job.has_active_derived_job():
                try:
                    external = self.image_client.get_status(job.derived_job_id)
                except Exception as exc:
                    report_exception(
                        self.notifier,
                        exc,
                        "BatchPoller.poll_derived",
                        {"job_id": job.job_id, "derived_job_id": job.derived_job_id},
                    )
                    return
                status = map_image_status(external)
                logger.info("Thumbnail batch %s of %s: %s -> %s", job.derived_job_id, job.job_id, external, status)
                if status == "processing":
                    return
                job = self.handlers.apply_thumbnails(job, status)

            self.handlers.finish_blog(job)
        except Exception as exc:
            self._handler_failed(job, exc, derived=True)
            return

        self._send_success_alert(job)
        self._drop(job)

    def _handler_failed(self, job: JobRecord, exc: Exception, derived: bool = False) -> None:
        failures = job.handler_failures + 1
        give_up = failures >= self.max_handler_attempts
        logger.error(
            "Result handling for %s failed (%d/%d): %s", job.job_id, failures, self.max_handler_attempts, exc,
            exc_info=exc,
        )

        if give_up and derived and job.has_active_derived_job():
            # Abandon the thumbnails; the next pass publishes without them.
            outcome = "thumbnails abandoned, posts continue without them"
            self.store.update(
                job.job_id,
                handler_failures=0,
                derived_status_by_unit={i: "failed" for i in job.derived_status_by_unit},
            )
        elif give_up:
            outcome = "giving up, job removed"
            self.store.update(job.job_id, status="failed", handler_failures=failures)
            self._drop(job)
        else:
            outcome = "will retry on the next check"
            # A completed-but-unhandled job goes back to processing so the next pass re-runs it.
            self.store.update(
                job.job_id,
                handler_failures=failures,
                status="completed" if derived else "processing",
            )

        self.notifier.post(
            f"**Batch result handling failed**\n\n**Time:** {timestamp()}\n**Type:** {job.job_type}\n"
            f"**Job:** {job.job_id}\n**Attempt:** {failures}/{self.max_handler_attempts}\n"
            f"**Error:** {type(exc).__name__}: {exc}\n**Next:** {outcome}"
        )

    def _drop(self, job: JobRecord) -> None:
        delete_artifact(job)
        self.store.remove(job.job_id)

    def _send_success_alert(self, job: JobRecord) -> None:
        self.notifier.post(
            f"**Batch job succeeded**\n\n**Time:** {timestamp()}\n**Type:** {job.job_type}\n"
            f"**Job:** {job.job_id}\n**Groups:** {len(job.groups)}"
        )

    def _send_failure_alert(self, job: JobRecord, external_status: str) -> None:
        self.notifier.post(
            f"**Batch job failed**\n\n**Time:** {timestamp()}\n**Type:** {job.job_type}\n"
            f"**Job:** {job.job_id}\n**Groups:** {len(job.groups)}\n**Status:** {external_status}"
        )
