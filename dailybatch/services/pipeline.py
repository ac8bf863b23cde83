from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from dailybatch.errors import is_rate_limited
from dailybatch.models import ContentItem, WorkUnit, utcnow
from dailybatch.services.completions import function_call_arguments
from dailybatch.services.concurrency import run_in_chunks
from dailybatch.services.notifier import report_exception, timestamp
from dailybatch.services.prompts import GROUPING_FUNCTION, grouping_request_body
from dailybatch.services.submission import BatchSubmitter

logger = logging.getLogger(__name__)

GENERIC_TOPIC = "암호화폐 투자 정보"

TopicGroup = tuple[str, list[ContentItem]]


def merge_groups(
    contents: list[ContentItem],
    raw_groups: list[dict[str, Any]],
    max_groups: int,
    min_size: int = 2,
) -> list[TopicGroup]:
    groups: list[TopicGroup] = []
    for raw in raw_groups:
        indices = []
        for idx in raw.get("contentIndices") or []:
            if isinstance(idx, float) and idx.is_integer():
                idx = int(idx)
            if isinstance(idx, int) and 0 <= idx < len(contents):
                indices.append(idx)
        items = [contents[i] for i in indices]
        if len(items) >= min_size:
            groups.append((raw.get("topic") or GENERIC_TOPIC, items))

    if len(groups) > max_groups:
        logger.info("Merging %d topic groups down to %d", len(groups), max_groups)
        groups.sort(key=lambda group: len(group[1]), reverse=True)
        kept, rest = groups[:max_groups], groups[max_groups:]
        _, last_items = kept[-1]
        merged = list(last_items)
        for _, items in rest:
            merged.extend(items)
        kept[-1] = (GENERIC_TOPIC, merged)
        groups = kept
    return groups


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class DailySummaryPipeline:
    def __init__(
        self,
        content_source: Any,
        completion_client: Any,
        news_search: Any,
        submitter: BatchSubmitter,
        notifier: Any,
        model: str,
        min_contents: int = 2,
        max_groups: int = 3,
        lookback_hours: int = 24,
        news_per_group: int = 5,
        chunk_size: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.content_source = content_source
        self.completion_client = completion_client
        self.news_search = news_search
        self.submitter = submitter
        self.notifier = notifier
        self.model = model
        self.min_contents = min_contents
        self.max_groups = max_groups
        self.lookback_hours = lookback_hours
        self.news_per_group = news_per_group
        self.chunk_size = chunk_size
        self.clock = clock

    def _fetch_contents(self) -> list[ContentItem]:
        try:
            return self.content_source.list_all()
        except requests.HTTPError as exc:
            response = exc.response
            if response is not None and response.status_code == 403:
                self.notifier.post(
                    f"**Content source returned 403**\n\n**Time:** {timestamp()}\n"
                    f"**URL:** {response.url}\n**Body:** {response.text[:1000]}\n"
                    "Check the API key and its permissions."
                )
            logger.error("Fetching collected contents failed, continuing with none: %s", exc)
        except requests.RequestException as exc:
            if is_rate_limited(exc):
                logger.warning("Content source is rate limiting; continuing with no contents")
            else:
                logger.error("Fetching collected contents failed, continuing with none: %s", exc)
        except ValueError as exc:
            # malformed rows (pydantic ValidationError) or a non-JSON body
            logger.error("Content source returned unusable data, continuing with none: %s", exc)
        return []

    def recent_contents(self, contents: list[ContentItem]) -> list[ContentItem]:
        now = self.clock()
        since = now - timedelta(hours=self.lookback_hours)
        return [
            item
            for item in contents
            if item.created_at is not None and item.content and since <= _aware(item.created_at) <= now
        ]

    def group_by_topic(self, contents: list[ContentItem]) -> list[TopicGroup]:
        try:
            response = self.completion_client.chat(grouping_request_body(contents, self.model, self.max_groups))
            args = function_call_arguments(response, GROUPING_FUNCTION)
        except ValueError as exc:
            logger.error("Topic grouping returned an unusable answer: %s", exc)
            return []
        except requests.RequestException as exc:
            report_exception(self.notifier, exc, "DailySummaryPipeline.group_by_topic")
            return [(GENERIC_TOPIC, contents)]
        return merge_groups(contents, args.get("groups") or [], self.max_groups)

    def _work_unit(self, numbered: tuple[int, TopicGroup]) -> WorkUnit:
        index, (topic, items) = numbered
        query = topic or (items[0].title if items else "") or GENERIC_TOPIC
        try:
            news = self.news_search.search(query, self.news_per_group)
        except requests.RequestException as exc:
            logger.warning("News search for %r failed, continuing without: %s", query, exc)
            news = []
        return WorkUnit(index=index, topic=topic, contents=items, news=news)

    def enrich(self, groups: list[TopicGroup]) -> list[WorkUnit]:
        return run_in_chunks(list(enumerate(groups)), self._work_unit, self.chunk_size)

    def run(self) -> str | None:
        recent = self.recent_contents(self._fetch_contents())
        logger.info("%d contents collected in the last %dh", len(recent), self.lookback_hours)
        if len(recent) < self.min_contents:
            self.notifier.post(
                f"**Daily summary skipped**\n\n**Time:** {timestamp()}\n"
                f"**Reason:** only {len(recent)} contents (need {self.min_contents})"
            )
            return None

        display_name = f"daily-summary-{self.clock():%Y-%m-%d}"
        if any(job.display_name == display_name for job in self.submitter.store.load()):
            logger.info("Batch %s is already in flight; skipping", display_name)
            return None

        try:
            remote_id = self.completion_client.find_active(display_name)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Could not look up remote batch %s: %s", display_name, exc)
            remote_id = None
        if remote_id:
            logger.warning("Batch %s is still running remotely as %s but is not cached; skipping", display_name, remote_id)
            self.notifier.post(
                f"**Daily summary skipped**\n\n**Time:** {timestamp()}\n"
                f"**Reason:** batch {remote_id} ({display_name}) is already running remotely"
            )
            return None

        groups = self.group_by_topic(recent)
        if not groups:
            self.notifier.post(
                f"**Daily summary skipped**\n\n**Time:** {timestamp()}\n"
                f"**Reason:** grouping failed\n**Contents:** {len(recent)}"
            )
            return None

        topics = ", ".join(topic for topic, _ in groups[:5])
        self.notifier.post(
            f"**Blog generation started**\n\n**Time:** {timestamp()}\n**Groups:** {len(groups)}\n**Topics:** {topics}"
        )

        units = self.enrich(groups)
        try:
            job_id = self.submitter.submit(units, "blog", display_name)
        except Exception as exc:
            self.notifier.post(
                f"**Blog batch submission failed**\n\n**Time:** {timestamp()}\n**Error:** {exc}\n**Groups:** {len(units)}"
            )
            report_exception(self.notifier, exc, "DailySummaryPipeline.run", {"groups": len(units)})
            return None

        logger.info("Blog batch %s submitted; results are picked up by the poller", job_id)
        return job_id
