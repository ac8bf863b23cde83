from __future__ import annotations

from unittest.mock import Mock

import pytest

from dailybatch.scheduler import Tick, start_job


def test_start_job_survives_failing_runs(notifier):
    calls = []

    def task():
        calls.append(len(calls))
        if len(calls) == 2:
            raise RuntimeError("boom")

    sleeps = []
    start_job("test", task, 30, max_runs=3, notifier=notifier, sleep=sleeps.append)

    assert len(calls) == 3
    assert sleeps == [30, 30]
    assert len(notifier.messages) == 1
    assert "RuntimeError" in notifier.messages[0]


def test_rate_limits_are_not_reported(notifier):
    def task():
        raise RuntimeError("429 Too Many Requests")

    start_job("test", task, 1, max_runs=2, notifier=notifier, sleep=lambda _: None)

    assert notifier.messages == []


def test_tick_polls_every_time_and_summarizes_when_due():
    bot = Mock()
    now = [0.0]
    tick = Tick(bot, summary_interval_s=100, clock=lambda: now[0])

    tick()
    now[0] = 50
    tick()
    now[0] = 120
    tick()

    assert bot.poller.poll_once.call_count == 3
    assert bot.pipeline.run.call_count == 2


def test_failed_summary_still_polls_and_retries_next_tick():
    bot = Mock()
    bot.pipeline.run.side_effect = [ValueError("bad createdAt"), "batch_1"]
    now = [0.0]
    tick = Tick(bot, summary_interval_s=100, clock=lambda: now[0])

    with pytest.raises(ValueError):
        tick()
    now[0] = 10
    tick()
    now[0] = 20
    tick()

    assert bot.poller.poll_once.call_count == 3
    assert bot.pipeline.run.call_count == 2
