from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import requests

logger = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000


class DiscordNotifier:
    """Best-effort webhook poster: a failed post is logged and otherwise ignored."""

    def __init__(self, webhook_url: str | None, timeout_s: int = 10):
        self.webhook_url = webhook_url
        self.timeout_s = timeout_s

    def post(self, message: str) -> bool:
        if not self.webhook_url:
            logger.info("Notification (no webhook configured): %s", message)
            return False
        if len(message) > DISCORD_MESSAGE_LIMIT:
            message = message[: DISCORD_MESSAGE_LIMIT - 15] + "\n...(truncated)"
        try:
            resp = requests.post(self.webhook_url, json={"content": message}, timeout=self.timeout_s)
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Could not send webhook message: %s", exc)
            return False
        return True


class NotifierPlaceholder:
    def __init__(self):
        self.messages: list[str] = []

    def post(self, message: str) -> bool:
        # Offline placeholder for local development without hosted APIs.
        self.messages.append(message)
        logger.info("[placeholder] notification: %s", message)
        return True


def timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def report_exception(notifier: Any, exc: BaseException, job_name: str | None = None, extra: dict | None = None) -> None:
    """Log an exception with its stack and forward a condensed copy to the notifier."""
    logger.error("Exception in %s: %s: %s", job_name or "unknown", type(exc).__name__, exc, exc_info=exc)

    lines = [f"**Exception**\n\n**Time:** {timestamp()}"]
    if job_name:
        lines.append(f"**Job:** {job_name}")
    lines.append(f"**Type:** {type(exc).__name__}")
    lines.append(f"**Message:** {exc}")
    if extra:
        lines.append(f"**Extra:** {json.dumps(extra, default=str, ensure_ascii=False)}")
    stack = traceback.format_exception(type(exc), exc, exc.__traceback__)
    stack_lines = "".join(stack).splitlines()[:10]
    if stack_lines:
        lines.append("**Stack:**\n```\n" + "\n".join(stack_lines) + "\n```")
    notifier.post("\n".join(lines))
