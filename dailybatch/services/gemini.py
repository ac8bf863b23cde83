from __future__ import annotations

import base64
import logging
import re
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import requests

from dailybatch.errors import ResultFetchError
from dailybatch.models import RawResult
from dailybatch.services.demux import image_results, parse_jsonl

logger = logging.getLogger(__name__)

ACTIVE_STATES = {"PENDING", "QUEUED", "RUNNING"}
GCS_URI = re.compile(r"^gs://([^/]+)/(.*)$")


def state_name(state: str | None) -> str:
    """Normalize ``JOB_STATE_RUNNING`` / ``BATCH_STATE_RUNNING`` to ``RUNNING``."""
    if not state:
        return ""
    return re.sub(r"^(JOB|BATCH)_STATE_", "", state.upper())


class GcsResultReader:
    """Reads ``.jsonl`` result files under a ``gs://bucket/prefix`` via the GCS JSON API."""

    def __init__(self, access_token: str | None, timeout_s: int, base_url: str = "https://storage.googleapis.com"):
        self.access_token = access_token
        self.timeout_s = timeout_s
        self.base_url = base_url.rstrip("/")

    def read_prefix(self, gcs_path: str) -> list[Any]:
        match = GCS_URI.match(gcs_path)
        if not match:
            raise ValueError(f"invalid GCS path: {gcs_path}")
        bucket, prefix = match.groups()
        headers = {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}

        resp = requests.get(
            f"{self.base_url}/storage/v1/b/{bucket}/o",
            headers=headers,
            params={"prefix": prefix},
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        names = [item["name"] for item in resp.json().get("items", []) if item["name"].endswith(".jsonl")]
        if not names:
            raise ResultFetchError(f"no .jsonl result files under {gcs_path}")

        rows: list[Any] = []
        for name in names:
            logger.info("Reading batch results from gs://%s/%s", bucket, name)
            obj = requests.get(
                f"{self.base_url}/storage/v1/b/{bucket}/o/{quote(name, safe='')}",
                headers=headers,
                params={"alt": "media"},
                timeout=self.timeout_s,
            )
            obj.raise_for_status()
            rows.extend(parse_jsonl(obj.text))
        return rows


class GeminiImageBatchClient:
    def __init__(
        self,
        api_key: str | None,
        base_url: str,
        timeout_s: int,
        gcs_output_path: str | None = None,
        gcs_reader: GcsResultReader | None = None,
        fetch_retries: int = 3,
        fetch_delay_s: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.gcs_output_path = gcs_output_path
        self.gcs_reader = gcs_reader
        self.fetch_retries = max(1, fetch_retries)
        self.fetch_delay_s = fetch_delay_s
        self._sleep = sleep

    def _params(self) -> dict[str, str]:
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY (or GOOGLE_API_KEY) is not configured")
        return {"key": self.api_key}

    def _get(self, url: str, **params: Any) -> requests.Response:
        resp = requests.get(url, params={**self._params(), **params}, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp

    def submit(self, prompts: list[tuple[str, str]], display_name: str, model: str) -> str:
        """Create an inline-request image batch; ``prompts`` are ``(key, prompt)`` pairs."""
        if not prompts:
            raise ValueError("image batch needs at least one prompt")
        batch: dict[str, Any] = {
            "display_name": display_name,
            "input_config": {
                "requests": {
                    "requests": [
                        {
                            "request": {
                                "contents": [{"parts": [{"text": prompt}]}],
                                "generation_config": {"responseModalities": ["IMAGE"]},
                            },
                            "metadata": {"key": key},
                        }
                        for key, prompt in prompts
                    ]
                }
            },
        }
        if self.gcs_output_path:
            prefix = self.gcs_output_path if self.gcs_output_path.endswith("/") else f"{self.gcs_output_path}/"
            batch["output_config"] = {"gcs_destination": {"output_uri_prefix": prefix}}
        else:
            logger.warning("GEMINI_BATCH_OUTPUT_GCS_PATH is not set; relying on inline or file results")

        resp = requests.post(
            f"{self.base_url}/v1beta/models/{model}:batchGenerateContent",
            params=self._params(),
            json={"batch": batch},
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        name = resp.json()["name"]
        logger.info("Created image batch %s (%s, %d prompts)", name, display_name, len(prompts))
        return name

    def get(self, name: str) -> dict[str, Any]:
        return self._get(f"{self.base_url}/v1beta/{name}").json()

    @staticmethod
    def _state(job: dict[str, Any]) -> str:
        metadata = job.get("metadata") or {}
        return metadata.get("state") or job.get("state") or ""

    def get_status(self, name: str) -> str:
        return self._state(self.get(name))

    def find_active(self, display_name: str) -> str | None:
        payload = self._get(f"{self.base_url}/v1beta/batches", pageSize=20).json()
        for job in payload.get("operations") or payload.get("batches") or []:
            metadata = job.get("metadata") or {}
            job_display_name = metadata.get("displayName") or job.get("displayName")
            if job_display_name == display_name and state_name(self._state(job)) in ACTIVE_STATES:
                return job.get("name")
        return None

    def _download_file(self, file_name: str) -> list[Any]:
        resp = self._get(f"{self.base_url}/download/v1beta/{file_name}:download", alt="media")
        return parse_jsonl(resp.text)

    def _collect(self, job: dict[str, Any]) -> list[Any]:
        dest = job.get("response") or job.get("dest") or {}
        inlined = dest.get("inlinedResponses")
        if isinstance(inlined, dict):
            inlined = inlined.get("inlinedResponses")
        if inlined:
            logger.info("Using %d inline image results", len(inlined))
            return list(inlined)

        file_name = dest.get("responsesFile") or dest.get("fileName")
        if file_name:
            logger.info("Reading image results from file %s", file_name)
            return self._download_file(file_name)

        gcs_path = (
            (job.get("outputInfo") or {}).get("gcsOutputDirectory")
            or ((job.get("outputConfig") or {}).get("gcsDestination") or {}).get("outputUriPrefix")
            or self.gcs_output_path
        )
        if gcs_path and self.gcs_reader is not None:
            return self.gcs_reader.read_prefix(gcs_path)
        return []

    def fetch_results(self, name: str) -> list[RawResult]:
        last_error: Exception | None = None
        for attempt in range(1, self.fetch_retries + 1):
            try:
                entries = self._collect(self.get(name))
                if not entries:
                    raise ResultFetchError(f"image batch {name} returned no results")
                return image_results(entries)
            except (ResultFetchError, requests.RequestException) as exc:
                last_error = exc
                if attempt < self.fetch_retries:
                    delay = self.fetch_delay_s * attempt
                    logger.warning(
                        "Fetching image batch results failed (%d/%d): %s; retrying in %.0fs",
                        attempt,
                        self.fetch_retries,
                        exc,
                        delay,
                    )
                    self._sleep(delay)
        raise ResultFetchError(f"could not fetch results for {name}: {last_error}") from last_error


def extract_image(body: Any) -> bytes:
    """Return the first inline image of a GenerateContentResponse body."""
    if not isinstance(body, dict):
        raise ValueError("response body is missing")
    candidates = body.get("candidates") or [{}]
    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            data = re.sub(r"^data:image/\w+;base64,", "", inline["data"])
            return base64.b64decode(data)
    raise ValueError("no image data in response")
