"""
backend/models/post.py

Post and Comment snapshots read from the ledger store.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from backend.core.clock import as_utc
from backend.features.ledger.store import LedgerRecord


class Post(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    author_id: str
    author_name: Optional[str] = None
    title: str
    content: str = ""
    excerpt: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = []
    thumbnail: Optional[str] = None
    status: str = "draft"
    views: int = 0
    like_count: int = 0
    comment_count: int = 0
    published_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "Post":
        return cls(
            id=record.key,
            author_id=record["author_id"],
            author_name=record.get("author_name"),
            title=record["title"],
            content=record.get("content") or "",
            excerpt=record.get("excerpt"),
            category=record.get("category"),
            tags=list(record.get("tags") or []),
            thumbnail=record.get("thumbnail"),
            status=record.get("status") or "draft",
            views=int(record.get("views") or 0),
            like_count=int(record.get("like_count") or 0),
            comment_count=int(record.get("comment_count") or 0),
            published_at=as_utc(record.get("published_at")),
            rejection_reason=record.get("rejection_reason"),
            version=record.version,
            created_at=as_utc(record.get("created_at")),
            updated_at=as_utc(record.get("updated_at")),
        )


class Comment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    post_id: str
    author_id: str
    author_name: Optional[str] = None
    content: str
    like_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "Comment":
        return cls(
            id=record.key,
            post_id=record["post_id"],
            author_id=record["author_id"],
            author_name=record.get("author_name"),
            content=record["content"],
            like_count=int(record.get("like_count") or 0),
            created_at=as_utc(record.get("created_at")),
            updated_at=as_utc(record.get("updated_at")),
        )
