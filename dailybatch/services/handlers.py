from __future__ import annotations

import logging
import re
from typing import Any

import requests

from dailybatch.models import JobRecord, JobStatus, NewsItem, PostDraft, UnitOutcome
from dailybatch.services.chaining import JobChainer, thumbnail_key
from dailybatch.services.completions import function_call_arguments
from dailybatch.services.demux import demultiplex
from dailybatch.services.gemini import extract_image
from dailybatch.services.notifier import timestamp
from dailybatch.services.prompts import BLOG_FUNCTION, TRANSLATION_FUNCTION
from dailybatch.services.storage import JobCacheStore

logger = logging.getLogger(__name__)

STRIKETHROUGH = re.compile(r"~~([^~]+)~~")
REFERENCE_MARKERS = ("## 참고", "참고 링크", "## References")
DUPLICATE_MARKERS = ("duplicate", "already exists", "중복")


def parse_post(outcome: UnitOutcome, function_name: str) -> PostDraft:
    args = function_call_arguments(outcome.body, function_name)
    title = (args.get("title") or "").strip()
    content = args.get("content") or ""
    if not title or not content:
        raise ValueError("post is missing a title or content")
    return PostDraft(title=title, content=content)


def finalize_content(content: str, news: list[NewsItem]) -> str:
    content = STRIKETHROUGH.sub(r"\1", content)
    if news and not any(marker in content for marker in REFERENCE_MARKERS):
        links = "\n".join(f"- [{item.title}]({item.link})" for item in news)
        content += f"\n\n## 참고 링크\n\n{links}"
    return content


def with_thumbnail(draft: PostDraft, url: str) -> PostDraft:
    if url in draft.content:
        return draft.model_copy(update={"thumbnail": url})
    return PostDraft(title=draft.title, content=f"![thumbnail]({url})\n\n{draft.content}", thumbnail=url)


def _is_duplicate(exc: requests.RequestException) -> bool:
    response = getattr(exc, "response", None)
    if response is not None and response.status_code == 409:
        return True
    text = f"{exc} {response.text if response is not None else ''}".lower()
    return any(marker in text for marker in DUPLICATE_MARKERS)


class ResultHandlers:
    """Job-type specific handling of finished batch results.

    ``handle_completed`` returns True when the job is fully processed and may
    be dropped from the cache, False when it must stay (a derived thumbnail
    job is still running).
    """

    def __init__(
        self,
        store: JobCacheStore,
        completion_client: Any,
        image_client: Any | None,
        uploader: Any,
        publisher: Any,
        notifier: Any,
        chainer: JobChainer,
        enable_thumbnails: bool = True,
    ):
        self.store = store
        self.completion_client = completion_client
        self.image_client = image_client
        self.uploader = uploader
        self.publisher = publisher
        self.notifier = notifier
        self.chainer = chainer
        self.enable_thumbnails = enable_thumbnails and image_client is not None

    def _outcomes(self, job: JobRecord) -> list[UnitOutcome]:
        results = self.completion_client.fetch_results(job.job_id)
        keys = [unit.correlation_id(job.job_type) for unit in job.groups]
        return demultiplex(results, keys)

    def _notify_unit_failures(self, job: JobRecord, failures: list[tuple[int, str]]) -> None:
        if not failures:
            return
        details = "\n".join(f"- group {index}: {error}" for index, error in failures[:5])
        more = "\n..." if len(failures) > 5 else ""
        self.notifier.post(
            f"**{job.job_type} results partially failed**\n\n**Time:** {timestamp()}\n"
            f"**Job:** {job.job_id}\n**Failed:** {len(failures)}\n**Details:**\n{details}{more}"
        )

    def publish(self, job: JobRecord, drafts: dict[int, PostDraft], lang: str) -> tuple[int, int]:
        saved = failed = 0
        for _, draft in sorted(drafts.items()):
            try:
                self.publisher.create(draft, lang)
                saved += 1
                logger.info("Published %s post %r", lang, draft.title)
            except requests.RequestException as exc:
                if _is_duplicate(exc):
                    logger.info("Post %r already published", draft.title)
                    saved += 1
                    continue
                logger.error("Publishing %s post %r failed: %s", lang, draft.title, exc)
                failed += 1
        if saved or failed:
            self.notifier.post(
                f"**Posts published ({lang})**\n\n**Time:** {timestamp()}\n**Job:** {job.job_id}\n"
                f"**Saved:** {saved}\n**Failed:** {failed}"
            )
        return saved, failed

    def handle_completed(self, job: JobRecord) -> bool:
        if job.job_type == "blog":
            return self.handle_blog(job)
        if job.job_type == "translation":
            return self.handle_translation(job)
        raise ValueError(f"no result handler for job type {job.job_type}")

    def handle_blog(self, job: JobRecord) -> bool:
        news_by_unit = {unit.index: unit.news for unit in job.groups}
        drafts: dict[int, PostDraft] = {}
        failures: list[tuple[int, str]] = []

        for outcome in self._outcomes(job):
            unit = job.groups[outcome.index]
            if not outcome.success:
                failures.append((unit.index, outcome.error or "unknown error"))
                continue
            try:
                draft = parse_post(outcome, BLOG_FUNCTION)
            except ValueError as exc:
                logger.error("Blog result %s is malformed: %s", outcome.key, exc)
                failures.append((unit.index, str(exc)))
                continue
            draft.content = finalize_content(draft.content, news_by_unit.get(unit.index, []))
            drafts[unit.index] = draft

        self._notify_unit_failures(job, failures)
        if not drafts:
            logger.warning("Blog job %s produced no usable posts", job.job_id)
            return True

        if self.enable_thumbnails:
            try:
                derived_job_id = self.chainer.submit_thumbnails(job, drafts)
            except (requests.RequestException, ValueError) as exc:
                logger.error("Thumbnail batch for %s could not be created, continuing without: %s", job.job_id, exc)
            else:
                self.store.update(
                    job.job_id,
                    status="completed",
                    results_by_unit=drafts,
                    derived_job_id=derived_job_id,
                    derived_status_by_unit={i: "processing" for i in drafts},
                    handler_failures=0,
                )
                logger.info("Blog job %s waits for thumbnail batch %s", job.job_id, derived_job_id)
                return False

        self.store.update(job.job_id, results_by_unit=drafts)
        self.publish(job, drafts, "ko")
        self.chainer.chain_translation(job, drafts)
        return True

    def handle_translation(self, job: JobRecord) -> bool:
        sources = {unit.index: unit.draft for unit in job.groups}
        drafts: dict[int, PostDraft] = {}
        failures: list[tuple[int, str]] = []

        for outcome in self._outcomes(job):
            unit = job.groups[outcome.index]
            if not outcome.success:
                failures.append((unit.index, outcome.error or "unknown error"))
                continue
            try:
                draft = parse_post(outcome, TRANSLATION_FUNCTION)
            except ValueError as exc:
                logger.error("Translation result %s is malformed: %s", outcome.key, exc)
                failures.append((unit.index, str(exc)))
                continue
            source = sources.get(unit.index)
            draft.content = STRIKETHROUGH.sub(r"\1", draft.content)
            draft.thumbnail = source.thumbnail if source else None
            drafts[unit.index] = draft

        self._notify_unit_failures(job, failures)
        self.store.update(job.job_id, results_by_unit=drafts)
        self.publish(job, drafts, "en")
        return True

    def apply_thumbnails(self, job: JobRecord, derived_status: JobStatus) -> JobRecord:
        """Record the outcome of the thumbnail batch onto the parent blog job."""
        drafts = dict(job.results_by_unit)
        statuses: dict[int, JobStatus] = dict(job.derived_status_by_unit)
        urls = dict(job.derived_result_by_unit)

        if derived_status == "completed":
            indices = sorted(drafts)
            results = self.image_client.fetch_results(job.derived_job_id)
            for outcome in demultiplex(results, [thumbnail_key(i) for i in indices]):
                index = indices[outcome.index]
                if not outcome.success:
                    logger.warning("Thumbnail %s failed: %s", outcome.key, outcome.error)
                    statuses[index] = "failed"
                    continue
                try:
                    url = self.uploader.upload(extract_image(outcome.body), f"{job.job_id}-{index}.jpg")
                except (ValueError, requests.RequestException) as exc:
                    logger.error("Thumbnail %s could not be stored: %s", outcome.key, exc)
                    statuses[index] = "failed"
                    continue
                urls[index] = url
                statuses[index] = "completed"
                drafts[index] = with_thumbnail(drafts[index], url)
        else:
            statuses = {i: "failed" for i in statuses}

        updated = self.store.update(
            job.job_id,
            results_by_unit=drafts,
            derived_status_by_unit=statuses,
            derived_result_by_unit=urls,
        )

        failed = sum(1 for status in statuses.values() if status == "failed")
        if failed:
            self.notifier.post(
                f"**Thumbnail generation failed**\n\n**Time:** {timestamp()}\n**Job:** {job.job_id}\n"
                f"**Thumbnail batch:** {job.derived_job_id}\n**Failed:** {failed}\n**Succeeded:** {len(urls)}\n"
                "Posts are published without the missing thumbnails."
            )
        return updated or job.model_copy(
            update={
                "results_by_unit": drafts,
                "derived_status_by_unit": statuses,
                "derived_result_by_unit": urls,
            }
        )

    def finish_blog(self, job: JobRecord) -> None:
        drafts = dict(job.results_by_unit)
        self.publish(job, drafts, "ko")
        self.chainer.chain_translation(job, drafts)
