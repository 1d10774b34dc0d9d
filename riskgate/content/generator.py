"""Content generators: the gated operation behind the usage gate."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from riskgate.config import Settings, get_settings, safe_error_detail
from riskgate.schemas import ContentGenerationRequest

logger = logging.getLogger(__name__)

WATERMARK = "\n\n---\n*Generated by ContentScale Platform - Professional AI Content Generation*"

_SYSTEM_PROMPT = """You are an expert content creator using the CRAFT framework:

C - Cut: Remove unnecessary content and focus on key points
R - Review: Ensure accuracy and relevance
A - Add: Enhance with valuable information and insights
F - Fact-check: Verify claims and provide credible information
T - Trust: Build credibility through authoritative language and sources

Respond with a JSON object with the keys "title", "content", "keywordDensity",
"readabilityScore" and "seoOptimization"."""


@dataclass
class GeneratedContent:
    title: str
    content: str
    seo_score: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "content": self.content, "seoScore": self.seo_score, "metadata": self.metadata}


class ContentGenerationError(Exception):
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error


class ContentGenerator(ABC):
    name: str = "base"

    @abstractmethod
    async def generate(self, request: ContentGenerationRequest, has_own_api_key: bool = False) -> GeneratedContent:
        """Produce one article. Raises ContentGenerationError on failure."""


def _keywords(request: ContentGenerationRequest) -> list[str]:
    return [k.strip() for k in request.keywords.split(",") if k.strip()]


def seo_score(title: str, content: str, request: ContentGenerationRequest) -> int:
    score = 75
    keywords = _keywords(request)
    if 30 <= len(title) <= 60:
        score += 5
    if keywords and keywords[0].lower() in title.lower():
        score += 10
    words = len(content.split())
    if request.word_count * 0.9 <= words <= request.word_count * 1.1:
        score += 5
    lowered = content.lower()
    score += min(sum(1 for k in keywords if k.lower() in lowered) * 2, 10)
    return min(score, 100)


def _finish(title: str, content: str, request: ContentGenerationRequest, has_own_api_key: bool) -> GeneratedContent:
    score = seo_score(title, content, request)
    if not has_own_api_key:
        content += WATERMARK
    return GeneratedContent(title=title, content=content, seo_score=score, metadata=request.model_dump(mode="json"))


class TemplateContentGenerator(ContentGenerator):
    """Offline generator for development and tests."""

    name = "template"

    async def generate(self, request: ContentGenerationRequest, has_own_api_key: bool = False) -> GeneratedContent:
        keywords = _keywords(request)
        primary = keywords[0] if keywords else request.topic
        secondary = keywords[1] if len(keywords) > 1 else "optimization"
        title = f"{request.topic}: Complete Guide for {request.audience}"
        content = (
            f"# {title}\n\n"
            f"## Introduction\n\n"
            f"This guide covers {request.topic} for {request.audience} in the {request.niche} industry.\n\n"
            f"## Essential Strategies\n\n"
            f"When working with {', '.join(keywords) or request.topic}, start from the fundamentals.\n\n"
            f"## Best Practices for {request.audience}\n"
            f"- Focus on {primary} as your primary objective\n"
            f"- Implement systematic approaches to {secondary}\n"
            f"- Monitor key performance indicators regularly\n\n"
            f"## Conclusion\n\n"
            f"Success with {request.topic} takes planning and consistent execution."
        )
        return _finish(title, content, request, has_own_api_key)


class OpenAICompatibleGenerator(ContentGenerator):
    """Chat-completions endpoint speaking the OpenAI wire format."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1/chat/completions",
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self._transport = transport

    def _prompt(self, request: ContentGenerationRequest) -> str:
        return (
            "Content Requirements:\n"
            f"- Topic: {request.topic}\n"
            f"- Target Audience: {request.audience}\n"
            f"- Niche/Industry: {request.niche}\n"
            f"- Keywords to include: {request.keywords}\n"
            f"- Word count: {request.word_count} words\n"
            f"- Language: {request.language}\n"
            f"- Tone: {request.tone.value}\n"
            f"- Content Type: {request.content_type.value}\n"
        )

    async def generate(self, request: ContentGenerationRequest, has_own_api_key: bool = False) -> GeneratedContent:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": self._prompt(request)},
            ],
            "temperature": 0.7,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        timeout = httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds)

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(self.base_url, headers=headers, json=payload, timeout=timeout)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            logger.warning("[CONTENT] provider timeout", extra={"provider": self.name, "model": self.model})
            raise ContentGenerationError("Content provider timeout", provider=self.name, original_error=exc) from exc
        except httpx.HTTPError as exc:
            raise ContentGenerationError(
                f"Content provider HTTP error: {safe_error_detail(exc)}", provider=self.name, original_error=exc
            ) from exc
        except json.JSONDecodeError as exc:
            raise ContentGenerationError(
                "Content provider returned invalid JSON", provider=self.name, original_error=exc
            ) from exc

        try:
            article = json.loads(data["choices"][0]["message"]["content"])
            title = str(article["title"])
            content = str(article["content"])
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise ContentGenerationError(
                f"Content provider response missing expected fields: {exc}", provider=self.name, original_error=exc
            ) from exc

        if not title or not content:
            raise ContentGenerationError("Content provider returned an empty article", provider=self.name)

        extras = [
            f"**{label}**: {article[key]}"
            for key, label in (
                ("seoOptimization", "SEO Optimization"),
                ("keywordDensity", "Keyword Density"),
                ("readabilityScore", "Readability Score"),
            )
            if article.get(key)
        ]
        if extras:
            content += "\n\n## CRAFT Framework Analysis\n\n" + "\n".join(extras)
        return _finish(title, content, request, has_own_api_key)


def create_generator(settings: Settings | None = None) -> ContentGenerator:
    s = settings or get_settings()
    if s.content_provider in ("", "none", "template"):
        return TemplateContentGenerator()
    if s.content_provider in ("openai", "openai_compat"):
        if not s.content_api_key:
            raise ValueError("CONTENT_API_KEY is required for the openai content provider")
        return OpenAICompatibleGenerator(
            api_key=s.content_api_key,
            model=s.content_model,
            base_url=s.content_base_url,
            timeout_seconds=s.content_timeout_seconds,
            connect_timeout_seconds=s.content_connect_timeout_seconds,
        )
    raise ValueError(f"Unknown CONTENT_PROVIDER: {s.content_provider}")


__all__ = [
    "ContentGenerator",
    "ContentGenerationError",
    "GeneratedContent",
    "OpenAICompatibleGenerator",
    "TemplateContentGenerator",
    "create_generator",
    "seo_score",
]
