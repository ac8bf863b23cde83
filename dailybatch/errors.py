from __future__ import annotations


class DailyBatchError(Exception):
    """Base class for errors raised by the batch orchestrator."""


class SubmissionError(DailyBatchError):
    """A batch job could not be created; no record or artifact was left behind."""


class ResultFetchError(DailyBatchError):
    """Results of a finished batch job could not be retrieved."""


class DuplicateJobError(DailyBatchError):
    def __init__(self, job_id: str):
        super().__init__(f"job {job_id} is already cached")
        self.job_id = job_id


RATE_LIMIT_MARKERS = ("429", "Too Many Requests", "Rate limit", "Resource Exhausted")


def is_rate_limited(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)
