from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from dailybatch.models import RawResult, UnitOutcome

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR = "result not found"


def demultiplex(results: Iterable[RawResult], keys: Sequence[str]) -> list[UnitOutcome]:
    """Bind batch results back to the requests they answer.

    ``keys`` are the correlation ids in submission order. An errored or empty
    result takes the first request still unbound, whatever id it carries. A
    successful result whose id names an unused request is bound to it; an
    unknown, repeated or missing id also takes the first unbound request. Requests
    left over get a "result not found" failure, and the returned list is
    always in submission order with one entry per key.
    """
    index_by_key = {key: i for i, key in enumerate(keys)}
    bound: dict[int, UnitOutcome] = {}

    def first_unused() -> int | None:
        return next((i for i in range(len(keys)) if i not in bound), None)

    for result in results:
        failed = result.error is not None or result.body is None
        index = None if failed else index_by_key.get(result.correlation_id or "")
        if index is None or index in bound:
            index = first_unused()
        if index is None:
            logger.warning("Dropping surplus batch result %s: every request is already bound", result.correlation_id)
            continue

        bound[index] = UnitOutcome(
            index=index,
            key=keys[index],
            success=not failed,
            body=None if failed else result.body,
            error=(result.error or "empty response") if failed else None,
        )

    for i, key in enumerate(keys):
        if i not in bound:
            bound[i] = UnitOutcome(index=i, key=key, success=False, error=NOT_FOUND_ERROR)

    return [bound[i] for i in sorted(bound)]


def parse_jsonl(text: str) -> list[Any]:
    """Parse newline-delimited JSON; a bad line yields an ``Exception`` marker instead of raising."""
    rows: list[Any] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            rows.append(json.loads(line))
        except ValueError as exc:
            logger.error("Unparsable batch result line %d (first 200 chars): %s", lineno, line[:200])
            rows.append(ValueError(f"JSON parse failed: {exc}"))
    return rows


def completion_results(text: str) -> list[RawResult]:
    """Normalize an OpenAI batch output file (one row per request with ``custom_id``)."""
    out: list[RawResult] = []
    for row in parse_jsonl(text):
        if isinstance(row, Exception):
            out.append(RawResult(error=str(row)))
            continue
        if not isinstance(row, dict):
            out.append(RawResult(error="unexpected result row"))
            continue
        correlation_id = row.get("custom_id")
        error = row.get("error")
        response = row.get("response") or {}
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            out.append(RawResult(correlation_id=correlation_id, error=message or json.dumps(error)))
            continue
        status_code = response.get("status_code")
        if status_code is not None and status_code >= 400:
            out.append(RawResult(correlation_id=correlation_id, error=f"status_code {status_code}"))
            continue
        out.append(RawResult(correlation_id=correlation_id, body=response.get("body")))
    return out


def _image_entry(entry: Any) -> RawResult:
    if isinstance(entry, Exception):
        return RawResult(error=str(entry))
    if not isinstance(entry, dict):
        return RawResult(error="unexpected result entry")

    metadata = entry.get("metadata") or {}
    correlation_id = (
        entry.get("key")
        or (metadata.get("key") if isinstance(metadata, dict) else None)
        or entry.get("customId")
        or entry.get("custom_id")
    )
    error = entry.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        return RawResult(correlation_id=correlation_id, error=message or "unknown error")
    if "response" in entry:
        return RawResult(correlation_id=correlation_id, body=entry.get("response"))
    # Object-storage rows are bare GenerateContentResponse objects.
    if "candidates" in entry:
        return RawResult(correlation_id=correlation_id, body=entry)
    return RawResult(correlation_id=correlation_id)


def image_results(entries: Iterable[Any]) -> list[RawResult]:
    """Normalize Gemini batch results from any of the inline, file or object-storage shapes."""
    return [_image_entry(entry) for entry in entries]
