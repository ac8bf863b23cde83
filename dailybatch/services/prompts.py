from __future__ import annotations

from typing import Any

from dailybatch.models import ContentItem, PostDraft, WorkUnit

BLOG_FUNCTION = "generate_daily_blog"
TRANSLATION_FUNCTION = "translate_blog_to_english"
GROUPING_FUNCTION = "group_contents_by_topic"

_POST_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Post title"},
        "content": {"type": "string", "description": "Full post body in markdown"},
    },
    "required": ["title", "content"],
}

BLOG_SYSTEM_PROMPT = (
    "You write cryptocurrency and blockchain investment articles. Combine the material below into one "
    "markdown blog post with an SEO-friendly title, an introduction, a body written as prose, and a conclusion. "
    "Never mention videos, channels or any other source, never mention AI, and never use strikethrough."
)

TRANSLATION_SYSTEM_PROMPT = (
    "You are a professional translator for cryptocurrency investment content. Translate the Korean post "
    "into natural English, keeping the markdown structure and the reference links."
)


def _function_call_body(model: str, system: str, user: str, name: str, description: str, schema: dict) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "functions": [{"name": name, "description": description, "parameters": schema}],
        "function_call": {"name": name},
    }


def blog_request_body(unit: WorkUnit, model: str) -> dict[str, Any]:
    sections = [
        f"## Material {i + 1}\nTitle: {item.title}\nSummary: {item.summary or '-'}\n"
        f"Body: {(item.content or '')[:2000]}"
        for i, item in enumerate(unit.contents)
    ]
    if unit.news:
        news = [
            f"## News {i + 1}\nTitle: {n.title}\nSnippet: {n.snippet}\nLink: {n.link}\nSource: {n.source or '-'}"
            for i, n in enumerate(unit.news)
        ]
        sections.append("## Related news\n\n" + "\n\n".join(news))
        sections.append('End the post with a "## 참고 링크" section linking every news item as [title](link).')
    topic = f'Topic: "{unit.topic}"\n\n' if unit.topic else ""
    return _function_call_body(
        model,
        BLOG_SYSTEM_PROMPT,
        topic + "\n\n".join(sections),
        BLOG_FUNCTION,
        "Writes one blog post from the collected material.",
        _POST_SCHEMA,
    )


def translation_request_body(unit: WorkUnit, model: str) -> dict[str, Any]:
    if unit.draft is None:
        raise ValueError(f"work unit {unit.index} has no draft to translate")
    return _function_call_body(
        model,
        TRANSLATION_SYSTEM_PROMPT,
        f"Title: {unit.draft.title}\n\nContent:\n{unit.draft.content}",
        TRANSLATION_FUNCTION,
        "Translates a Korean blog post into English.",
        _POST_SCHEMA,
    )


def thumbnail_prompt(draft: PostDraft, topic: str | None = None) -> str:
    return (
        f"Editorial thumbnail for an article titled \"{draft.title}\""
        + (f" about {topic}" if topic else "")
        + ". Professional, trustworthy news-publication style, 16:9. No text, numbers, charts, arrows or "
        "price symbols.\n\nArticle excerpt:\n"
        + draft.content[:1000]
    )


def grouping_request_body(contents: list[ContentItem], model: str, max_groups: int) -> dict[str, Any]:
    listing = "\n\n".join(
        f"## Content {i}\nTitle: {item.title}\nSummary: {item.summary or '-'}\nBody: {(item.content or '')[:1500]}"
        for i, item in enumerate(contents)
    )
    schema = {
        "type": "object",
        "properties": {
            "groups": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "topic": {"type": "string"},
                        "contentIndices": {"type": "array", "items": {"type": "number"}},
                    },
                    "required": ["topic", "contentIndices"],
                },
            }
        },
        "required": ["groups"],
    }
    return _function_call_body(
        model,
        f"Group related investment contents by topic. Each group needs at least 2 contents; "
        f"return at most {max_groups} groups. Indices start at 0.",
        listing,
        GROUPING_FUNCTION,
        "Groups contents by topic.",
        schema,
    )
