"""
Comment API routes.

- PUT    /api/comments/{id}   edit (author or admin)
- DELETE /api/comments/{id}   remove (author or admin), comment_count - 1
- POST   /api/comments/{id}/like  toggle like on a comment
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.api.deps import get_post_service
from backend.core.auth import get_current_actor
from backend.features.posts.service import PostService
from backend.models.actor import Actor


router = APIRouter(prefix="/api/comments", tags=["comments"])


class CommentUpdateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


@router.put("/{comment_id}")
def update_comment(
    comment_id: str,
    body: CommentUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    comment = posts.update_comment(comment_id, actor, body.content)
    return {"success": True, "data": comment.model_dump(mode="json")}


@router.delete("/{comment_id}")
def delete_comment(
    comment_id: str,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    posts.remove_comment(comment_id, actor)
    return {"success": True, "message": "Comment deleted successfully"}


@router.post("/{comment_id}/like")
def toggle_comment_like(
    comment_id: str,
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    posts.get_comment(comment_id, actor)
    result = posts.toggle_comment_like(comment_id, actor.identity)
    return {"success": True, "data": {"liked": result.liked, "likeCount": result.like_count}}
