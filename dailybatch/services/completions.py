from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import requests

from dailybatch.errors import ResultFetchError
from dailybatch.models import RawResult
from dailybatch.services.demux import completion_results

logger = logging.getLogger(__name__)

TERMINAL_BATCH_STATUSES = frozenset({"completed", "failed", "expired", "cancelled"})


class CompletionBatchClient:
    """OpenAI files + batches REST endpoints, plus the one-shot chat call used for grouping."""

    def __init__(self, api_key: str | None, base_url: str, timeout_s: int, completion_window: str = "24h"):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.completion_window = completion_window

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY is not configured")
        return {"Authorization": f"Bearer {self.api_key}"}

    def _get(self, path: str, **params: Any) -> requests.Response:
        resp = requests.get(f"{self.base_url}{path}", headers=self._headers(), params=params or None, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp

    def upload(self, artifact: Path) -> str:
        with artifact.open("rb") as fh:
            files = {"file": (artifact.name, fh, "application/jsonl")}
            resp = requests.post(
                f"{self.base_url}/v1/files",
                headers=self._headers(),
                data={"purpose": "batch"},
                files=files,
                timeout=self.timeout_s,
            )
        resp.raise_for_status()
        return resp.json()["id"]

    def submit(self, artifact: Path, endpoint: str, display_name: str) -> str:
        file_id = self.upload(artifact)
        logger.info("Uploaded batch input %s as %s", artifact.name, file_id)
        resp = requests.post(
            f"{self.base_url}/v1/batches",
            headers=self._headers(),
            json={
                "input_file_id": file_id,
                "endpoint": endpoint,
                "completion_window": self.completion_window,
                "metadata": {"display_name": display_name},
            },
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def get(self, job_id: str) -> dict[str, Any]:
        return self._get(f"/v1/batches/{job_id}").json()

    def get_status(self, job_id: str) -> str:
        return self.get(job_id).get("status", "")

    def find_active(self, display_name: str, limit: int = 20) -> str | None:
        payload = self._get("/v1/batches", limit=limit).json()
        for batch in payload.get("data", []):
            metadata = batch.get("metadata") or {}
            if metadata.get("display_name") == display_name and batch.get("status") not in TERMINAL_BATCH_STATUSES:
                return batch["id"]
        return None

    def file_content(self, file_id: str) -> str:
        return self._get(f"/v1/files/{file_id}/content").text

    def fetch_results(self, job_id: str) -> list[RawResult]:
        batch = self.get(job_id)
        results: list[RawResult] = []
        if batch.get("output_file_id"):
            results.extend(completion_results(self.file_content(batch["output_file_id"])))
        if batch.get("error_file_id"):
            results.extend(completion_results(self.file_content(batch["error_file_id"])))
        if not batch.get("output_file_id") and not batch.get("error_file_id"):
            raise ResultFetchError(f"batch {job_id} has no output file")
        logger.info("Fetched %d results for batch %s", len(results), job_id)
        return results

    def chat(self, body: dict[str, Any]) -> dict[str, Any]:
        resp = requests.post(
            f"{self.base_url}/v1/chat/completions",
            headers=self._headers(),
            json=body,
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        return resp.json()


def function_call_arguments(body: Any, function_name: str) -> dict[str, Any]:
    """Pull the JSON arguments of a forced function call out of a chat completion body."""
    if not isinstance(body, dict):
        raise ValueError("response body is missing")
    choices = body.get("choices") or [{}]
    message = choices[0].get("message") or {}
    call = message.get("function_call")
    if not call and message.get("tool_calls"):
        call = message["tool_calls"][0].get("function")
    if not call or call.get("name") != function_name:
        finish_reason = choices[0].get("finish_reason", "unknown")
        raise ValueError(f"function call {function_name} missing (finish_reason: {finish_reason})")
    args = json.loads((call.get("arguments") or "{}").strip())
    if not isinstance(args, dict):
        raise ValueError("function call arguments are not an object")
    return args
