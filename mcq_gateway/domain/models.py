"""Pydantic models shared across service/API layers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator


class SubscriptionTier(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class UserIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None


class MCQ(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    question: StrictStr = Field(min_length=1)
    options: tuple[StrictStr, StrictStr, StrictStr, StrictStr]
    answer_index: int = Field(ge=0, le=3)

    @field_validator("question")
    @classmethod
    def _strip_question(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("question must not be blank")
        return value


class UsageSnapshot(BaseModel):
    uploads_today: int = Field(ge=0)
    daily_reset_at: datetime


class QuotaDecision(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime


class CapacityDecision(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime


class CacheEntry(BaseModel):
    fingerprint: str
    mcqs: list[MCQ]
    created_at: datetime


class Material(BaseModel):
    """Study material: either extracted text or base64 file data with a MIME type."""

    text: str | None = None
    file_data: str | None = None
    mime_type: str | None = None

    @property
    def is_binary(self) -> bool:
        return self.file_data is not None

    @property
    def decoded_size(self) -> int:
        if self.file_data is None:
            return 0
        return (len(self.file_data) * 3) // 4

    def content_key(self) -> str:
        if self.file_data is not None:
            return self.file_data
        return self.text or ""


__all__ = [
    "CacheEntry",
    "CapacityDecision",
    "MCQ",
    "Material",
    "QuotaDecision",
    "SubscriptionTier",
    "UsageSnapshot",
    "UserIdentity",
]
