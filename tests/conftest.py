"""Shared fakes for the batch orchestrator tests."""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

import pytest

from dailybatch.models import ContentItem, JobRecord, NewsItem, RawResult, WorkUnit
from dailybatch.services.chaining import JobChainer
from dailybatch.services.handlers import ResultHandlers
from dailybatch.services.notifier import NotifierPlaceholder
from dailybatch.services.poller import BatchPoller
from dailybatch.services.remotes import AssetUploadPlaceholderClient, BlogPublishPlaceholderClient
from dailybatch.services.storage import JobCacheStore
from dailybatch.services.submission import BatchSubmitter


def _raise_or_return(value: Any) -> Any:
    if isinstance(value, Exception):
        raise value
    return value


class FakeCompletionClient:
    def __init__(self):
        self.statuses: dict[str, Any] = {}
        self.results: dict[str, Any] = {}
        self.remote: dict[str, str] = {}
        self.submitted: list[tuple[str, str, list[dict]]] = []
        self.submit_error: Exception | None = None
        self.chat_response: Any = None

    def submit(self, artifact: Path, endpoint: str, display_name: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        job_id = f"batch_{len(self.submitted) + 1}"
        rows = [json.loads(line) for line in artifact.read_text(encoding="utf-8").splitlines()]
        self.submitted.append((job_id, display_name, rows))
        return job_id

    def get_status(self, job_id: str) -> str:
        return _raise_or_return(self.statuses.get(job_id, "in_progress"))

    def fetch_results(self, job_id: str) -> list[RawResult]:
        return _raise_or_return(self.results[job_id])

    def find_active(self, display_name: str) -> str | None:
        return self.remote.get(display_name)

    def chat(self, body: dict) -> dict:
        return _raise_or_return(self.chat_response)


class FakeImageClient:
    def __init__(self):
        self.statuses: dict[str, Any] = {}
        self.results: dict[str, Any] = {}
        self.remote: dict[str, str] = {}
        self.submitted: list[tuple[str, str, list[tuple[str, str]]]] = []

    def submit(self, prompts: list[tuple[str, str]], display_name: str, model: str) -> str:
        name = f"batches/img-{len(self.submitted) + 1}"
        self.submitted.append((name, display_name, prompts))
        return name

    def get_status(self, name: str) -> str:
        return _raise_or_return(self.statuses.get(name, "JOB_STATE_RUNNING"))

    def fetch_results(self, name: str) -> list[RawResult]:
        return _raise_or_return(self.results[name])

    def find_active(self, display_name: str) -> str | None:
        return self.remote.get(display_name)


def post_body(function: str, title: str, content: str) -> dict:
    arguments = json.dumps({"title": title, "content": content}, ensure_ascii=False)
    return {
        "choices": [
            {"message": {"function_call": {"name": function, "arguments": arguments}}, "finish_reason": "stop"}
        ]
    }


def image_body(data: bytes = b"jpeg-bytes") -> dict:
    encoded = base64.b64encode(data).decode()
    return {"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/jpeg", "data": encoded}}]}}]}


@pytest.fixture
def store(tmp_path: Path) -> JobCacheStore:
    return JobCacheStore(tmp_path / "cache.json")


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def notifier() -> NotifierPlaceholder:
    return NotifierPlaceholder()


@pytest.fixture
def publisher() -> BlogPublishPlaceholderClient:
    return BlogPublishPlaceholderClient()


@pytest.fixture
def submitter(store, completion_client, tmp_path) -> BatchSubmitter:
    return BatchSubmitter(store, completion_client, tmp_path / "work", "/v1/chat/completions", "gpt-test")


@pytest.fixture
def make_poller(store, completion_client, notifier, publisher, submitter):
    def _make(image_client=None, max_handler_attempts: int = 3) -> BatchPoller:
        chainer = JobChainer(store, submitter, completion_client, image_client, "image-test")
        handlers = ResultHandlers(
            store,
            completion_client,
            image_client,
            AssetUploadPlaceholderClient(),
            publisher,
            notifier,
            chainer,
            enable_thumbnails=image_client is not None,
        )
        return BatchPoller(store, completion_client, image_client, handlers, notifier, max_handler_attempts)

    return _make


@pytest.fixture
def blog_units() -> list[WorkUnit]:
    return [
        WorkUnit(
            index=i,
            topic=f"topic {i}",
            contents=[ContentItem(title=f"video {i}", content="body text")],
            news=[NewsItem(title=f"news {i}", link=f"https://news.example/{i}")],
        )
        for i in range(2)
    ]


@pytest.fixture
def blog_job(store, blog_units, tmp_path) -> JobRecord:
    artifact = tmp_path / "blog-artifact.jsonl"
    artifact.write_text("{}\n", encoding="utf-8")
    job = JobRecord(
        job_id="batch_blog",
        job_type="blog",
        status="processing",
        display_name="daily-summary-2026-10-16",
        groups=blog_units,
        aux_file_path=str(artifact),
    )
    store.append(job)
    return job
