from __future__ import annotations

import base64

import pytest
import requests

from dailybatch.models import NewsItem, PostDraft
from dailybatch.services.completions import function_call_arguments
from dailybatch.services.gemini import extract_image, state_name
from dailybatch.services.handlers import _is_duplicate, finalize_content, with_thumbnail

NEWS = [NewsItem(title="ETF 승인", link="https://news.example/etf")]


def test_finalize_content_strips_strikethrough_and_adds_references():
    content = finalize_content("가격이 ~~하락~~ 상승했다", NEWS)
    assert content.startswith("가격이 하락 상승했다")
    assert content.endswith("## 참고 링크\n\n- [ETF 승인](https://news.example/etf)")


def test_finalize_content_keeps_existing_references():
    content = "본문\n\n## 참고 링크\n\n- [a](b)"
    assert finalize_content(content, NEWS) == content


def test_with_thumbnail_prepends_image_once():
    draft = with_thumbnail(PostDraft(title="t", content="body"), "https://img/1.jpg")
    assert draft.content == "![thumbnail](https://img/1.jpg)\n\nbody"
    assert with_thumbnail(draft, "https://img/1.jpg").content == draft.content


def test_conflict_counts_as_already_published():
    response = requests.Response()
    response.status_code = 409
    response._content = b""
    assert _is_duplicate(requests.HTTPError("conflict", response=response))
    assert not _is_duplicate(requests.ConnectionError("reset"))


def test_function_call_arguments_accepts_tool_calls():
    body = {
        "choices": [
            {"message": {"tool_calls": [{"function": {"name": "f", "arguments": '{"title": "x"}'}}]}}
        ]
    }
    assert function_call_arguments(body, "f") == {"title": "x"}
    with pytest.raises(ValueError):
        function_call_arguments(body, "other")
    with pytest.raises(ValueError):
        function_call_arguments(None, "f")


def test_extract_image_decodes_inline_data():
    encoded = base64.b64encode(b"\xff\xd8jpeg").decode()
    body = {"candidates": [{"content": {"parts": [{"text": "hi"}, {"inline_data": {"data": encoded}}]}}]}
    assert extract_image(body) == b"\xff\xd8jpeg"
    with pytest.raises(ValueError):
        extract_image({"candidates": [{"content": {"parts": [{"text": "no image"}]}}]})


def test_state_name_strips_prefixes():
    assert state_name("JOB_STATE_SUCCEEDED") == "SUCCEEDED"
    assert state_name("batch_state_running") == "RUNNING"
    assert state_name(None) == ""
