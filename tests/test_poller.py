from __future__ import annotations

from pathlib import Path

from conftest import image_body, post_body

from dailybatch.errors import ResultFetchError
from dailybatch.models import JobRecord, PostDraft, RawResult, WorkUnit
from dailybatch.services.prompts import BLOG_FUNCTION, TRANSLATION_FUNCTION


def blog_results() -> list[RawResult]:
    return [
        RawResult(correlation_id="blog-1", body=post_body(BLOG_FUNCTION, "이더리움 전망", "이더리움 ~~본문~~")),
        RawResult(correlation_id="blog-0", body=post_body(BLOG_FUNCTION, "비트코인 전망", "비트코인 본문")),
    ]


def test_running_job_is_marked_processing(make_poller, store, completion_client, notifier):
    store.append(JobRecord(job_id="batch_a", job_type="blog"))
    completion_client.statuses["batch_a"] = "validating"

    make_poller().poll_once()

    assert store.get("batch_a").status == "processing"
    assert notifier.messages == []


def test_remote_failure_removes_job_and_alerts_once(make_poller, store, completion_client, notifier, blog_job):
    completion_client.statuses[blog_job.job_id] = "expired"

    make_poller().poll_once()

    assert store.load() == []
    assert not Path(blog_job.aux_file_path).exists()
    assert len(notifier.messages) == 1
    assert "Batch job failed" in notifier.messages[0]


def test_status_query_error_keeps_job(make_poller, store, completion_client, notifier, blog_job):
    completion_client.statuses[blog_job.job_id] = ConnectionError("network down")

    make_poller().poll_once()

    assert store.get(blog_job.job_id).status == "processing"
    assert len(notifier.messages) == 1


def test_completed_blog_publishes_and_chains_translation(
    make_poller, store, completion_client, publisher, notifier, blog_job
):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = blog_results()

    make_poller().poll_once()

    assert store.get(blog_job.job_id) is None
    assert not Path(blog_job.aux_file_path).exists()
    assert [(lang, post.title) for lang, post in publisher.published] == [
        ("ko", "비트코인 전망"),
        ("ko", "이더리움 전망"),
    ]
    # strikethrough removed, references appended
    second = publisher.published[1][1].content
    assert "~~" not in second
    assert "## 참고 링크" in second
    assert "https://news.example/1" in second

    (translation,) = store.load()
    assert translation.job_type == "translation"
    assert translation.source_job_id == blog_job.job_id
    assert translation.status == "pending"
    assert any("Batch job succeeded" in message for message in notifier.messages)


def test_handler_failure_keeps_job_and_notifies_once(make_poller, store, completion_client, notifier, blog_job):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = RuntimeError("output file unavailable")

    make_poller().poll_once()

    job = store.get(blog_job.job_id)
    assert job is not None
    assert job.status == "processing"
    assert job.handler_failures == 1
    assert len(notifier.messages) == 1
    assert "output file unavailable" in notifier.messages[0]


def test_handler_gives_up_after_max_attempts(make_poller, store, completion_client, notifier, blog_job):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = RuntimeError("still broken")
    poller = make_poller(max_handler_attempts=2)

    poller.poll_once()
    poller.poll_once()
    poller.poll_once()

    assert store.load() == []
    assert len(notifier.messages) == 2
    assert "giving up" in notifier.messages[-1]


def test_handling_twice_chains_one_translation(make_poller, store, completion_client, blog_job):
    completion_client.results[blog_job.job_id] = blog_results()
    poller = make_poller()

    poller.handlers.handle_completed(blog_job)
    poller.handlers.handle_completed(blog_job)

    translations = [job for job in store.load() if job.job_type == "translation"]
    assert len(translations) == 1


def test_partial_blog_failure_is_reported(make_poller, store, completion_client, publisher, notifier, blog_job):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = [
        RawResult(correlation_id="blog-0", body=post_body(BLOG_FUNCTION, "비트코인 전망", "본문")),
    ]

    make_poller().poll_once()

    assert len(publisher.published) == 1
    assert any("partially failed" in message and "result not found" in message for message in notifier.messages)
    (translation,) = store.load()
    assert [unit.index for unit in translation.groups] == [0]


def test_completed_translation_publishes_english(make_poller, store, completion_client, publisher):
    draft = PostDraft(title="비트코인", content="본문", thumbnail="https://img/0.jpg")
    store.append(
        JobRecord(
            job_id="batch_tr",
            job_type="translation",
            status="processing",
            groups=[WorkUnit(index=0, key="translation-0", draft=draft)],
            source_job_id="batch_blog",
        )
    )
    completion_client.statuses["batch_tr"] = "completed"
    completion_client.results["batch_tr"] = [
        RawResult(correlation_id="translation-0", body=post_body(TRANSLATION_FUNCTION, "Bitcoin", "Body")),
    ]

    make_poller().poll_once()

    assert store.load() == []
    ((lang, post),) = publisher.published
    assert lang == "en"
    assert post.title == "Bitcoin"
    assert post.thumbnail == "https://img/0.jpg"


def test_blog_waits_for_thumbnails_then_publishes(
    make_poller, store, completion_client, image_client, publisher, blog_job
):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = blog_results()
    poller = make_poller(image_client=image_client)

    poller.poll_once()

    parent = store.get(blog_job.job_id)
    assert parent.status == "completed"
    assert parent.derived_job_id == "batches/img-1"
    assert parent.derived_status_by_unit == {0: "processing", 1: "processing"}
    assert sorted(parent.results_by_unit) == [0, 1]
    assert publisher.published == []

    image_client.statuses["batches/img-1"] = "JOB_STATE_SUCCEEDED"
    image_client.results["batches/img-1"] = [
        RawResult(correlation_id="thumbnail-1", body=image_body()),
        RawResult(correlation_id="thumbnail-0", body=image_body()),
    ]
    poller.poll_once()

    assert store.get(blog_job.job_id) is None
    assert [lang for lang, _ in publisher.published] == ["ko", "ko"]
    assert all(post.thumbnail and post.content.startswith("![thumbnail]") for _, post in publisher.published)
    (translation,) = store.load()
    assert translation.job_type == "translation"
    assert translation.results_by_unit[0].thumbnail == f"placeholder://images/{blog_job.job_id}-0.jpg"


def test_failed_thumbnail_batch_publishes_without_images(
    make_poller, store, completion_client, image_client, publisher, notifier, blog_job
):
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = blog_results()
    poller = make_poller(image_client=image_client)
    poller.poll_once()

    image_client.statuses["batches/img-1"] = "JOB_STATE_FAILED"
    poller.poll_once()

    assert store.get(blog_job.job_id) is None
    assert len(publisher.published) == 2
    assert all(post.thumbnail is None for _, post in publisher.published)
    assert any("Thumbnail generation failed" in message for message in notifier.messages)


def test_crash_after_thumbnails_resolved_resumes_finalization(make_poller, store, image_client, publisher, blog_job):
    # parent already has resolved thumbnails; a previous run died before publishing
    store.update(
        blog_job.job_id,
        status="completed",
        results_by_unit={0: PostDraft(title="비트코인", content="본문")},
        derived_job_id="batches/img-9",
        derived_status_by_unit={0: "failed"},
    )

    make_poller(image_client=image_client).poll_once()

    assert store.get(blog_job.job_id) is None
    assert [post.title for _, post in publisher.published] == ["비트코인"]


def test_failing_thumbnail_results_are_abandoned_after_max_attempts(
    make_poller, store, completion_client, image_client, publisher, notifier, blog_job
):
    store.update(blog_job.job_id, handler_failures=1)
    completion_client.statuses[blog_job.job_id] = "completed"
    completion_client.results[blog_job.job_id] = blog_results()
    poller = make_poller(image_client=image_client, max_handler_attempts=2)

    poller.poll_once()
    # the thumbnail wait starts with a fresh retry budget
    assert store.get(blog_job.job_id).handler_failures == 0

    image_client.statuses["batches/img-1"] = "JOB_STATE_SUCCEEDED"
    image_client.results["batches/img-1"] = ResultFetchError("no results yet")

    poller.poll_once()
    parent = store.get(blog_job.job_id)
    assert parent.handler_failures == 1
    assert parent.status == "completed"

    poller.poll_once()
    parent = store.get(blog_job.job_id)
    assert parent.derived_status_by_unit == {0: "failed", 1: "failed"}
    assert "thumbnails abandoned" in notifier.messages[-1]
    assert publisher.published == []

    poller.poll_once()

    assert store.get(blog_job.job_id) is None
    assert [lang for lang, _ in publisher.published] == ["ko", "ko"]
    assert all(post.thumbnail is None for _, post in publisher.published)
    (translation,) = store.load()
    assert translation.source_job_id == blog_job.job_id
