from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

import requests

from dailybatch.models import ContentItem, NewsItem, PostDraft

logger = logging.getLogger(__name__)


class AssetUploadClient:
    def __init__(self, url: str, timeout_s: int):
        self.url = url
        self.timeout_s = timeout_s

    def upload(self, data: bytes, filename: str | None = None) -> str:
        name = filename or f"{uuid4().hex}.jpg"
        files = {"file": (name, data, "image/jpeg")}
        resp = requests.post(self.url, files=files, timeout=self.timeout_s)
        resp.raise_for_status()
        # The upload service answers with the bare url, sometimes JSON-quoted.
        return resp.text.strip().strip('"')


class BlogPublishClient:
    def __init__(self, base_url: str, api_key: str | None, author: str, timeout_s: int):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.author = author
        self.timeout_s = timeout_s

    def create(self, post: PostDraft, lang: str) -> dict[str, Any]:
        body = {
            "title": post.title,
            "content": post.content,
            "author": self.author,
            "lang": lang,
            "thumbnail": post.thumbnail,
        }
        headers = {"X-API-KEY": self.api_key} if self.api_key else {}
        resp = requests.post(f"{self.base_url}/blogs", json=body, headers=headers, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()


class ContentSourceClient:
    def __init__(self, url: str, api_key: str | None, timeout_s: int):
        self.url = url
        self.api_key = api_key
        self.timeout_s = timeout_s

    def list_all(self) -> list[ContentItem]:
        headers = {"X-API-KEY": self.api_key} if self.api_key else {}
        resp = requests.get(self.url, headers=headers, timeout=self.timeout_s)
        resp.raise_for_status()
        rows = resp.json()
        if isinstance(rows, dict):
            rows = rows.get("data") or rows.get("items") or []
        return [
            ContentItem(
                title=row.get("title") or "",
                summary=row.get("summary"),
                content=row.get("content"),
                link=row.get("link"),
                created_at=row.get("createdAt") or row.get("created_at"),
            )
            for row in rows
        ]


class NewsSearchClient:
    def __init__(self, url: str, api_key: str | None, engine_id: str | None, timeout_s: int):
        self.url = url
        self.api_key = api_key
        self.engine_id = engine_id
        self.timeout_s = timeout_s

    def search(self, query: str, limit: int = 5) -> list[NewsItem]:
        if not self.api_key or not self.engine_id:
            logger.warning("News search is not configured; skipping enrichment for %r", query)
            return []
        resp = requests.get(
            self.url,
            params={
                "key": self.api_key,
                "cx": self.engine_id,
                "q": f"{query} news",
                "num": min(limit, 10),
                "safe": "active",
            },
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        return [
            NewsItem(
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                link=item["link"],
                source=item.get("displayLink") or item.get("formattedUrl"),
            )
            for item in resp.json().get("items", [])
            if item.get("link")
        ]


class AssetUploadPlaceholderClient:
    def upload(self, data: bytes, filename: str | None = None) -> str:
        # Offline placeholder for local development without hosted APIs.
        return f"placeholder://images/{filename or uuid4().hex + '.jpg'}"


class BlogPublishPlaceholderClient:
    def __init__(self):
        self.published: list[tuple[str, PostDraft]] = []

    def create(self, post: PostDraft, lang: str) -> dict[str, Any]:
        # Offline placeholder for local development without hosted APIs.
        self.published.append((lang, post))
        logger.info("[placeholder] would publish %s post %r", lang, post.title)
        return {"id": len(self.published), "title": post.title}


class NewsSearchPlaceholderClient:
    def search(self, query: str, limit: int = 5) -> list[NewsItem]:
        return []
