"""
User API routes.

- GET /api/users/stats     dashboard totals for the caller's posts
- PUT /api/users/profile   edit name / bio / avatar
- GET /api/users/{id}      public profile with published post count
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, HttpUrl

from backend.api.deps import get_post_service
from backend.core.auth import get_current_actor
from backend.features.posts.service import PostService
from backend.features.users.service import public_profile, update_profile
from backend.models.actor import Actor


router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    bio: Optional[str] = Field(None, max_length=500)
    avatar: Optional[HttpUrl] = None


@router.get("/stats")
def my_stats(
    actor: Actor = Depends(get_current_actor),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.author_stats(actor.identity)}


@router.put("/profile")
def edit_profile(
    body: ProfileUpdateRequest,
    actor: Actor = Depends(get_current_actor),
):
    user = update_profile(actor.identity, body.model_dump(mode="json", exclude_unset=True))
    return {"success": True, "data": user.to_public()}


@router.get("/{user_id}")
def get_profile(user_id: str):
    return {"success": True, "data": public_profile(user_id)}
