from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Tone(str, Enum):
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    FRIENDLY = "friendly"
    AUTHORITATIVE = "authoritative"
    CONVERSATIONAL = "conversational"


class ContentType(str, Enum):
    BLOG = "blog"
    ARTICLE = "article"
    SOCIAL = "social"
    EMAIL = "email"
    PRODUCT = "product"
    LANDING = "landing"


class ContentGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(..., min_length=5)
    audience: str = Field(..., min_length=3)
    niche: str = Field(..., min_length=3)
    keywords: str = Field(..., min_length=10)
    word_count: int = Field(..., ge=100, le=5000, alias="wordCount")
    language: str = Field(..., min_length=2)
    tone: Tone
    content_type: ContentType = Field(..., alias="contentType")
    premium: bool = False


class ApiKeysRequest(BaseModel):
    """Key material is accepted only to prove presence; it is never stored."""

    openai: Optional[str] = None
    gemini: Optional[str] = None

    def providers(self) -> list[str]:
        return [name for name in ("openai", "gemini") if (getattr(self, name) or "").strip()]


class AbusePatch(BaseModel):
    is_banned: Optional[bool] = None
    is_flagged: Optional[bool] = None
    is_vpn: Optional[bool] = None
    is_proxy: Optional[bool] = None
    is_datacenter: Optional[bool] = None
    admin_note: Optional[str] = Field(None, max_length=500)
    clear_flags: bool = False

    @model_validator(mode="after")
    def _not_empty(self) -> "AbusePatch":
        if not self.clear_flags and not self.changes():
            raise ValueError("no fields to update")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True, exclude={"clear_flags"})


class CreditGrant(BaseModel):
    amount: int = Field(..., gt=0, le=10_000)
