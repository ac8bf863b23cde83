from __future__ import annotations

import logging
from typing import Any

import requests

from dailybatch.models import JobRecord, PostDraft, WorkUnit
from dailybatch.services.prompts import thumbnail_prompt
from dailybatch.services.storage import JobCacheStore
from dailybatch.services.submission import BatchSubmitter

logger = logging.getLogger(__name__)


def translation_name(source_job_id: str) -> str:
    return f"translation-{source_job_id}"


def thumbnails_name(source_job_id: str) -> str:
    return f"thumbnails-{source_job_id}"


def thumbnail_key(index: int) -> str:
    return f"thumbnail-{index}"


class JobChainer:
    """Submits follow-on jobs at most once per source job.

    Two guards apply: a still-active cached job pointing back at the source,
    and a live remote job carrying the deterministic chained name (which
    covers a crash between remote creation and the cache write).
    """

    def __init__(
        self,
        store: JobCacheStore,
        submitter: BatchSubmitter,
        completion_client: Any,
        image_client: Any | None,
        image_model: str,
    ):
        self.store = store
        self.submitter = submitter
        self.completion_client = completion_client
        self.image_client = image_client
        self.image_model = image_model

    def _find_remote(self, client: Any, display_name: str) -> str | None:
        try:
            return client.find_active(display_name)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Could not look up remote job %s: %s", display_name, exc)
            return None

    def chain_translation(self, source: JobRecord, drafts: dict[int, PostDraft]) -> str | None:
        if not drafts:
            logger.info("Job %s produced no posts; nothing to translate", source.job_id)
            return None

        existing = [job for job in self.store.find_by_source(source.job_id) if job.job_type == "translation"]
        if existing:
            logger.info(
                "Translation for %s already exists (%s); skipping",
                source.job_id,
                ", ".join(job.job_id for job in existing),
            )
            return existing[0].job_id

        topics = {unit.index: unit.topic for unit in source.groups}
        units = [
            WorkUnit(index=i, key=f"translation-{i}", topic=topics.get(i), draft=draft)
            for i, draft in sorted(drafts.items())
        ]
        display_name = translation_name(source.job_id)

        remote_id = self._find_remote(self.completion_client, display_name)
        if remote_id:
            if self.store.get(remote_id) is None:
                logger.info("Adopting running translation batch %s for %s", remote_id, source.job_id)
                self.store.append(
                    JobRecord(
                        job_id=remote_id,
                        job_type="translation",
                        status="processing",
                        display_name=display_name,
                        groups=units,
                        results_by_unit=drafts,
                        source_job_id=source.job_id,
                    )
                )
            return remote_id

        job_id = self.submitter.submit(
            units,
            "translation",
            display_name,
            source_job_id=source.job_id,
            results_by_unit=drafts,
        )
        logger.info("Chained translation batch %s from %s", job_id, source.job_id)
        return job_id

    def submit_thumbnails(self, source: JobRecord, drafts: dict[int, PostDraft]) -> str:
        if self.image_client is None:
            raise ValueError("image batch endpoint is not configured")
        display_name = thumbnails_name(source.job_id)
        remote_id = self._find_remote(self.image_client, display_name)
        if remote_id:
            logger.info("Reusing running thumbnail batch %s for %s", remote_id, source.job_id)
            return remote_id

        topics = {unit.index: unit.topic for unit in source.groups}
        prompts = [(thumbnail_key(i), thumbnail_prompt(draft, topics.get(i))) for i, draft in sorted(drafts.items())]
        return self.image_client.submit(prompts, display_name, self.image_model)
