"""
Post API routes.

- GET    /api/posts                  list (published by default)
- POST   /api/posts                  create draft
- GET    /api/posts/{id}             read (+1 view)
- PUT    /api/posts/{id}             edit content
- DELETE /api/posts/{id}             delete with comments and likes
- POST   /api/posts/{id}/submit      submit for moderation
- POST   /api/posts/{id}/like        toggle like
- GET    /api/posts/{id}/comments    list comments
- POST   /api/posts/{id}/comments    add comment
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.api.deps import get_post_service
from backend.core.auth import get_current_actor, get_optional_actor
from backend.features.posts.service import PostService
from backend.models.actor import Actor


router = APIRouter(prefix="/api/posts", tags=["posts"])


class PostCreateRequest(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    content: str = Field(..., min_length=50)
    excerpt: Optional[str] = Field(None, max_length=500)
    category: str = Field(..., min_length=1, max_length=100)
    tags: List[str] = Field(default_factory=list, max_length=10)
    thumbnail: Optional[str] = None


class PostUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    content: Optional[str] = Field(None, min_length=50)
    excerpt: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    tags: Optional[List[str]] = Field(None, max_length=10)
    thumbnail: Optional[str] = None


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


def _pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit}


@router.get("")
def list_posts(
    status: str = Query("published"),
    category: Optional[str] = None,
    author_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    viewer: Optional[Actor] = Depends(get_optional_actor),
    posts: PostService = Depends(get_post_service),
):
    items, total = posts.list_posts(
        status=status,
        category=category,
        author_id=author_id,
        search=search,
        page=page,
        limit=limit,
        viewer=viewer,
    )
    return {
        "success": True,
        "data": [p.model_dump(mode="json") for p in items],
        "pagination": _pagination(page, limit, total),
    }


@router.post("", status_code=201)
def create_post(
    body: PostCreateRequest,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    post = posts.create_post(actor, **body.model_dump())
    return {"success": True, "data": post.model_dump(mode="json")}


@router.get("/{post_id}")
def get_post(
    post_id: str,
    viewer: Optional[Actor] = Depends(get_optional_actor),
    posts: PostService = Depends(get_post_service),
):
    post = posts.view_post(post_id, viewer)
    return {"success": True, "data": post.model_dump(mode="json")}


@router.put("/{post_id}")
def update_post(
    post_id: str,
    body: PostUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    post = posts.update_post(post_id, actor, body.model_dump(exclude_unset=True))
    return {"success": True, "data": post.model_dump(mode="json")}


@router.delete("/{post_id}")
def delete_post(
    post_id: str,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    removed = posts.delete_post(post_id, actor)
    return {"success": True, "message": "Post deleted successfully", "removed": removed}


@router.post("/{post_id}/submit")
def submit_post(
    post_id: str,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    post = posts.submit(post_id, actor)
    return {"success": True, "data": post.model_dump(mode="json")}


@router.post("/{post_id}/like")
def toggle_like(
    post_id: str,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    posts.get_post(post_id, actor)
    result = posts.toggle_like(post_id, actor.identity)
    return {"success": True, "data": {"liked": result.liked, "likeCount": result.like_count}}


@router.get("/{post_id}/comments")
def list_comments(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    viewer: Optional[Actor] = Depends(get_optional_actor),
    posts: PostService = Depends(get_post_service),
):
    items, total = posts.list_comments(post_id, page=page, limit=limit, viewer=viewer)
    return {
        "success": True,
        "data": [c.model_dump(mode="json") for c in items],
        "pagination": _pagination(page, limit, total),
    }


@router.post("/{post_id}/comments", status_code=201)
def add_comment(
    post_id: str,
    body: CommentCreateRequest,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    comment = posts.add_comment(post_id, actor, body.content)
    return {"success": True, "data": comment.model_dump(mode="json")}
