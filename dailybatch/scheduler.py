from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dailybatch.config import Settings, settings
from dailybatch.errors import is_rate_limited
from dailybatch.logging_config import setup_logging
from dailybatch.services.chaining import JobChainer
from dailybatch.services.completions import CompletionBatchClient
from dailybatch.services.gemini import GcsResultReader, GeminiImageBatchClient
from dailybatch.services.handlers import ResultHandlers
from dailybatch.services.notifier import DiscordNotifier, NotifierPlaceholder, report_exception
from dailybatch.services.pipeline import DailySummaryPipeline
from dailybatch.services.poller import BatchPoller
from dailybatch.services.remotes import (
    AssetUploadClient,
    AssetUploadPlaceholderClient,
    BlogPublishClient,
    BlogPublishPlaceholderClient,
    ContentSourceClient,
    NewsSearchClient,
    NewsSearchPlaceholderClient,
)
from dailybatch.services.storage import JobCacheStore
from dailybatch.services.submission import BatchSubmitter

logger = logging.getLogger(__name__)


def start_job(
    name: str,
    task: Callable[[], Any],
    interval_s: float,
    max_runs: int | None = None,
    notifier: Any | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Run ``task`` forever (or ``max_runs`` times), ``interval_s`` apart.

    A failing run never stops the loop: rate limits are only logged, other
    errors are reported through the notifier.
    """
    runs = 0
    while max_runs is None or runs < max_runs:
        runs += 1
        try:
            task()
        except Exception as exc:
            if is_rate_limited(exc):
                logger.warning("[%s] rate limited, retrying next run: %s", name, exc)
            elif notifier is not None:
                report_exception(notifier, exc, name)
            else:
                logger.exception("[%s] run failed", name)
        if max_runs is None or runs < max_runs:
            sleep(interval_s)


@dataclass
class Bot:
    store: JobCacheStore
    poller: BatchPoller
    pipeline: DailySummaryPipeline
    notifier: Any


def build_bot(cfg: Settings) -> Bot:
    if cfg.use_hosted_apis:
        notifier: Any = DiscordNotifier(cfg.discord_webhook_url)
        uploader: Any = AssetUploadClient(cfg.asset_upload_url, cfg.request_timeout_s)
        publisher: Any = BlogPublishClient(cfg.publish_base_url, cfg.publish_api_key, cfg.post_author, cfg.request_timeout_s)
        news: Any = NewsSearchClient(
            cfg.news_search_url, cfg.news_search_api_key, cfg.news_search_engine_id, cfg.request_timeout_s
        )
    else:
        notifier = NotifierPlaceholder()
        uploader = AssetUploadPlaceholderClient()
        publisher = BlogPublishPlaceholderClient()
        news = NewsSearchPlaceholderClient()

    store = JobCacheStore(cfg.cache_file)
    completions = CompletionBatchClient(
        cfg.openai_api_key, cfg.openai_base_url, cfg.request_timeout_s, cfg.completion_window
    )
    images = None
    if cfg.enable_thumbnails and cfg.gemini_api_key:
        images = GeminiImageBatchClient(
            cfg.gemini_api_key,
            cfg.gemini_base_url,
            cfg.request_timeout_s,
            gcs_output_path=cfg.gcs_output_path,
            gcs_reader=GcsResultReader(cfg.gcs_access_token, cfg.request_timeout_s) if cfg.gcs_output_path else None,
            fetch_retries=cfg.result_fetch_retries,
            fetch_delay_s=cfg.result_fetch_delay_s,
        )

    submitter = BatchSubmitter(store, completions, cfg.work_dir, cfg.completion_endpoint, cfg.completion_model)
    chainer = JobChainer(store, submitter, completions, images, cfg.image_model)
    handlers = ResultHandlers(
        store, completions, images, uploader, publisher, notifier, chainer, enable_thumbnails=cfg.enable_thumbnails
    )
    poller = BatchPoller(store, completions, images, handlers, notifier, cfg.max_handler_attempts)
    pipeline = DailySummaryPipeline(
        ContentSourceClient(cfg.content_source_url, cfg.publish_api_key, cfg.request_timeout_s),
        completions,
        news,
        submitter,
        notifier,
        cfg.completion_model,
        min_contents=cfg.min_contents,
        max_groups=cfg.max_groups,
        lookback_hours=cfg.lookback_hours,
        news_per_group=cfg.news_per_group,
        chunk_size=cfg.concurrency_chunk_size,
    )
    return Bot(store=store, poller=poller, pipeline=pipeline, notifier=notifier)


class Tick:
    """One scheduler tick: always poll, run the summary pass when it is due."""

    def __init__(self, bot: Bot, summary_interval_s: float, clock: Callable[[], float] = time.monotonic):
        self.bot = bot
        self.summary_interval_s = summary_interval_s
        self.clock = clock
        self.last_summary: float | None = None

    def __call__(self) -> None:
        now = self.clock()
        try:
            if self.last_summary is None or now - self.last_summary >= self.summary_interval_s:
                self.bot.pipeline.run()
                # a failed run is retried on the next tick
                self.last_summary = now
        finally:
            self.bot.poller.poll_once()


def main() -> None:
    setup_logging(settings.log_level)
    bot = build_bot(settings)
    logger.info("Daily summary bot started (poll every %ss)", settings.poll_interval_s)
    start_job(
        "daily-summary batch bot",
        Tick(bot, settings.summary_interval_s),
        settings.poll_interval_s,
        notifier=bot.notifier,
    )


if __name__ == "__main__":
    main()
