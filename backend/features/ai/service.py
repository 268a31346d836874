"""Writing-assistant AI service.

Every completion is metered: the quota reservation happens before the
provider is called, and a provider failure after reservation is not refunded
(usage is metered on attempt, not on success).
"""

import re
from typing import Callable, List, Optional

from backend.core.errors import PermissionError, ValidationError
from backend.core.logging import log_event
from backend.features.ai.prompts import (
    GENERATE_PROMPT,
    IMPROVEMENTS_PROMPT,
    SEO_PROMPT,
    SYSTEM_PROMPT,
    TAGS_PROMPT,
    TITLES_PROMPT,
)
from backend.features.ai.provider import CompletionProvider, GroqCompletionProvider
from backend.features.usage.quota import QuotaStatus, UsageQuotaTracker
from backend.models.actor import Actor

MAX_TITLES = 4
MAX_SUGGESTIONS = 3
MAX_TAGS = 8
MAX_WORD_COUNT = 2000


def strip_numbering_line(text: str) -> str:
    """Remove any leading numbering or bullets from a single line."""
    return re.sub(r"^\s*(?:\d+[.):\-\]]+\s*|[-•*]+\s*)", "", text).strip().strip('"')


def split_lines(text: str) -> List[str]:
    lines = (strip_numbering_line(line) for line in (text or "").splitlines())
    return [line for line in lines if line]


def split_tags(text: str) -> List[str]:
    tags = (strip_numbering_line(tag).lstrip("#") for tag in re.split(r"[,\n]", text or ""))
    return [tag for tag in tags if tag]


def _clamp(text: str, limit: int) -> str:
    return (text or "")[:limit]


def calculate_seo_score(title: str, content: str, keywords: Optional[List[str]] = None) -> int:
    """Deterministic 0-100 score from title length, content length, keywords and headers."""
    title = title or ""
    content = content or ""
    score = 15
    if 30 <= len(title) <= 60:
        score += 20
    if len(content) >= 300:
        score += 20
    if keywords:
        haystacks = (title.lower(), content.lower())
        if any(k.lower() in h for k in keywords if k for h in haystacks):
            score += 30
    if "#" in content or "<h" in content:
        score += 15
    return min(score, 100)


class AIService:
    def __init__(
        self,
        quota: Optional[UsageQuotaTracker] = None,
        provider: Optional[CompletionProvider] = None,
        provider_factory: Callable[[], CompletionProvider] = lambda: GroqCompletionProvider(system_prompt=SYSTEM_PROMPT),
    ):
        self._quota = quota or UsageQuotaTracker()
        self._provider = provider
        self._provider_factory = provider_factory

    @property
    def provider(self) -> CompletionProvider:
        if self._provider is None:
            self._provider = self._provider_factory()
        return self._provider

    def _reserve(self, actor: Actor, feature: str) -> QuotaStatus:
        # Resolve the provider first so a configuration error never costs quota
        _ = self.provider
        status = self._quota.check_and_reserve(actor.identity)
        log_event(
            "info",
            "ai.quota_reserved",
            user_id=actor.identity,
            extra={"feature": feature, "used": status.used, "unlimited": status.unlimited},
        )
        return status

    def generate_suggestions(self, actor: Actor, title: str, content: str, category: Optional[str] = None) -> dict:
        """
        Titles, improvement suggestions and tags for a draft.

        Raises:
            QuotaExceededError: Monthly allowance used up
            ProviderError: Provider failed (the reservation is kept)
        """
        if not (title or "").strip():
            raise ValidationError("title is required")
        category = category or "general"
        status = self._reserve(actor, "suggestions")

        titles = self.provider.complete(
            TITLES_PROMPT.format(category=category, title=title), max_tokens=200, temperature=0.8
        )
        improvements = self.provider.complete(
            IMPROVEMENTS_PROMPT.format(content=_clamp(content, 1000)), max_tokens=300, temperature=0.7
        )
        tags = self.provider.complete(
            TAGS_PROMPT.format(category=category, title=title), max_tokens=100, temperature=0.6
        )

        return {
            "titles": split_lines(titles)[:MAX_TITLES],
            "suggestions": split_lines(improvements)[:MAX_SUGGESTIONS],
            "tags": split_tags(tags)[:MAX_TAGS],
            "seoScore": calculate_seo_score(title, content),
            "usage": status.to_dict(),
        }

    def generate_content(self, actor: Actor, prompt: str, word_count: int = 500, tone: str = "professional") -> dict:
        """
        Draft a full post from a prompt (premium and admin only).

        Raises:
            PermissionError: Standard users
        """
        if actor.role.is_metered:
            raise PermissionError("Premium subscription required for content generation", code="premium_required")
        if not (prompt or "").strip():
            raise ValidationError("prompt is required")
        if word_count < 1 or word_count > MAX_WORD_COUNT:
            raise ValidationError(f"word_count must be between 1 and {MAX_WORD_COUNT}")
        self._reserve(actor, "generate")

        text = self.provider.complete(
            GENERATE_PROMPT.format(word_count=word_count, tone=tone, prompt=prompt),
            max_tokens=min(word_count * 2, 2000),
            temperature=0.7,
        )
        return {"content": text, "wordCount": len(text.split())}

    def optimize_for_seo(self, actor: Actor, title: str, content: str, keywords: Optional[List[str]] = None) -> dict:
        status = self._reserve(actor, "seo")
        recommendations = self.provider.complete(
            SEO_PROMPT.format(
                title=title or "",
                content=_clamp(content, 1500),
                keywords=", ".join(keywords) if keywords else "N/A",
            ),
            max_tokens=500,
            temperature=0.5,
        )
        return {
            "recommendations": recommendations,
            "seoScore": calculate_seo_score(title, content, keywords),
            "improvements": split_lines(recommendations),
            "usage": status.to_dict(),
        }

    def usage(self, actor: Actor) -> QuotaStatus:
        return self._quota.usage_status(actor.identity)
