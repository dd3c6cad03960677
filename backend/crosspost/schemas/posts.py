"""Pydantic schemas for publishing"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from crosspost.core.platforms import Platform


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class MediaAttachment(BaseModel):
    url: str = ""
    type: MediaType = MediaType.IMAGE
    alt_text: Optional[str] = None


class PostContent(BaseModel):
    """Platform-neutral content; metadata carries the owning user and platform extras"""
    text: Optional[str] = None
    media: List[MediaAttachment] = Field(default_factory=list)
    link: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        value = self.metadata.get("user_id")
        return str(value) if value not in (None, "") else None

    @property
    def account_id(self) -> Optional[str]:
        value = self.metadata.get("account_id")
        return str(value) if value not in (None, "") else None

    def images(self) -> List[MediaAttachment]:
        return [item for item in self.media if item.type == MediaType.IMAGE]

    def videos(self) -> List[MediaAttachment]:
        return [item for item in self.media if item.type == MediaType.VIDEO]


class PostStatus(str, Enum):
    QUEUED = "queued"
    POSTED = "posted"
    FAILED = "failed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PostResult(BaseModel):
    """What callers get back from enqueue and status lookups"""
    job_id: Optional[str] = None
    status: PostStatus
    platform: Platform
    post_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


class PublishJobSnapshot(BaseModel):
    id: str
    platform: Platform
    status: JobStatus
    attempts: int = 0
    max_attempts: int
    payload: PostContent
    result: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    retry_after: Optional[float] = None
    timeout_seconds: Optional[float] = None


class MultiPlatformPostRequest(BaseModel):
    platforms: List[Platform]
    content: PostContent


class MultiPlatformPostResponse(BaseModel):
    results: List[PostResult]
