# =============================================
# File: astro_ai/models.py
# Purpose: Domain models + the response envelope shared by the services
# =============================================
from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from astro_ai.utils.errors import ErrorCode, ServiceError


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- Enums ----------

class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class InteractionAction(str, Enum):
    CLICK = "click"
    LIKE = "like"
    DISLIKE = "dislike"
    DISMISS = "dismiss"


# ---------- Chat ----------

class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    tokens: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SessionMetadata(BaseModel):
    total_tokens: int = 0
    avg_response_time_ms: float = 0.0
    message_count: int = 0


class Session(BaseModel):
    id: str = Field(default_factory=new_id)
    messages: List[Message] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)


# ---------- Recommendations ----------

class RecommendationItem(BaseModel):
    id: str
    title: str
    description: str = ""
    category: str
    kind: str = "script"  # "script" | "article"
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Interaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    action: InteractionAction
    item_id: str = Field(min_length=1)
    category: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class UserPreferences(BaseModel):
    user_id: str = Field(min_length=1)
    categories: List[str] = Field(default_factory=list)
    exclude_categories: List[str] = Field(default_factory=list)
    complexity: List[str] = Field(default_factory=list)
    max_recommendations: Optional[int] = Field(default=None, ge=1, le=50)
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class RecommendationOptions(BaseModel):
    max_recommendations: Optional[int] = Field(default=None, ge=1, le=50)
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    category: Optional[str] = None


# ---------- Vector search ----------

class VectorDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchOptions(BaseModel):
    max_results: Optional[int] = Field(default=None, ge=1, le=100)
    similarity: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    category: Optional[str] = None


class SearchResult(BaseModel):
    document_id: str
    text: str
    similarity: float = Field(ge=0.0, le=1.0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    results: List[SearchResult] = Field(default_factory=list)
    search_time_ms: float = 0.0
    vectors_searched: int = 0
    error: Optional[str] = None
    query_filtered: bool = False


# ---------- Envelope ----------

class ErrorInfo(BaseModel):
    code: ErrorCode
    message: str


class ResponseMetadata(BaseModel):
    request_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    processing_time_ms: float = 0.0
    tokens_used: Optional[int] = None
    content_filtered: Optional[bool] = None
    fallback_used: Optional[bool] = None
    original_provider: Optional[str] = None
    actual_provider: Optional[str] = None
    retry_after_s: Optional[float] = None


class Envelope(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorInfo] = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    @staticmethod
    def _elapsed_ms(started: Optional[float]) -> float:
        if started is None:
            return 0.0
        return round((time.perf_counter() - started) * 1000, 3)

    @classmethod
    def ok(cls, data: Any = None, started: Optional[float] = None, **meta: Any) -> "Envelope":
        return cls(
            success=True,
            data=data,
            metadata=ResponseMetadata(processing_time_ms=cls._elapsed_ms(started), **meta),
        )

    @classmethod
    def fail(cls, err: ServiceError, started: Optional[float] = None, **meta: Any) -> "Envelope":
        return cls(
            success=False,
            error=ErrorInfo(code=err.code, message=err.message),
            metadata=ResponseMetadata(processing_time_ms=cls._elapsed_ms(started), **meta),
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
