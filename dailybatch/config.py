from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class Settings:
    cache_file: Path
    work_dir: Path
    log_level: str
    use_hosted_apis: bool
    request_timeout_s: int
    openai_api_key: str | None
    openai_base_url: str
    completion_endpoint: str
    completion_model: str
    completion_window: str
    gemini_api_key: str | None
    gemini_base_url: str
    image_model: str
    enable_thumbnails: bool
    gcs_output_path: str | None
    gcs_access_token: str | None
    result_fetch_retries: int
    result_fetch_delay_s: float
    asset_upload_url: str
    publish_base_url: str
    publish_api_key: str | None
    post_author: str
    content_source_url: str
    news_search_url: str
    news_search_api_key: str | None
    news_search_engine_id: str | None
    news_per_group: int
    discord_webhook_url: str | None
    concurrency_chunk_size: int
    max_handler_attempts: int
    min_contents: int
    max_groups: int
    lookback_hours: int
    poll_interval_s: int
    summary_interval_s: int

    @staticmethod
    def from_env() -> "Settings":
        work_dir = Path(os.getenv("WORK_DIR", ".")).resolve()
        return Settings(
            cache_file=Path(os.getenv("CACHE_FILE", "daily-summary-batch-jobs-cache.json")),
            work_dir=work_dir,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            use_hosted_apis=_env_bool("USE_HOSTED_APIS", "true"),
            request_timeout_s=int(os.getenv("REQUEST_TIMEOUT_S", "60")),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com"),
            completion_endpoint=os.getenv("COMPLETION_ENDPOINT", "/v1/chat/completions"),
            completion_model=os.getenv("COMPLETION_MODEL", "gpt-5"),
            completion_window=os.getenv("COMPLETION_WINDOW", "24h"),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            gemini_base_url=os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            image_model=os.getenv("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview"),
            enable_thumbnails=_env_bool("ENABLE_THUMBNAILS", "true"),
            gcs_output_path=os.getenv("GEMINI_BATCH_OUTPUT_GCS_PATH"),
            gcs_access_token=os.getenv("GCS_ACCESS_TOKEN"),
            result_fetch_retries=int(os.getenv("RESULT_FETCH_RETRIES", "3")),
            result_fetch_delay_s=float(os.getenv("RESULT_FETCH_DELAY_S", "5")),
            asset_upload_url=os.getenv("ASSET_UPLOAD_URL", "http://localhost:8080/image/upload"),
            publish_base_url=os.getenv("PUBLISH_BASE_URL", "http://localhost:8081"),
            publish_api_key=os.getenv("PUBLISH_API_KEY"),
            post_author=os.getenv("POST_AUTHOR", "Web3 Scan"),
            content_source_url=os.getenv("CONTENT_SOURCE_URL", "http://localhost:8081/youtube"),
            news_search_url=os.getenv("NEWS_SEARCH_URL", "https://www.googleapis.com/customsearch/v1"),
            news_search_api_key=os.getenv("NEWS_SEARCH_API_KEY"),
            news_search_engine_id=os.getenv("NEWS_SEARCH_ENGINE_ID"),
            news_per_group=int(os.getenv("NEWS_PER_GROUP", "5")),
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL"),
            concurrency_chunk_size=int(os.getenv("CONCURRENCY_CHUNK_SIZE", "5")),
            max_handler_attempts=int(os.getenv("MAX_HANDLER_ATTEMPTS", "3")),
            min_contents=int(os.getenv("MIN_CONTENTS", "2")),
            max_groups=int(os.getenv("MAX_GROUPS", "3")),
            lookback_hours=int(os.getenv("LOOKBACK_HOURS", "24")),
            poll_interval_s=int(os.getenv("POLL_INTERVAL_S", "300")),
            summary_interval_s=int(os.getenv("SUMMARY_INTERVAL_S", "86400")),
        )


settings = Settings.from_env()
