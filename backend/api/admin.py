"""
Admin API routes (admin role required on every route).

- GET  /api/admin/posts/pending          moderation queue
- GET  /api/admin/stats                  platform counts
- GET  /api/admin/analytics              post and signup trends
- GET  /api/admin/users                  user list (search, role filter)
- PUT  /api/admin/posts/{id}/approve     pending -> published
- PUT  /api/admin/posts/{id}/reject      pending -> rejected
- PUT  /api/admin/posts/{id}/publish     draft -> published (override)
- POST /api/admin/posts/{id}/resync      recompute like/comment counters
- PUT  /api/admin/users/{id}/role        set role (only path to admin)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.api.deps import get_post_service
from backend.core.auth import require_admin
from backend.features.entitlements.service import set_role
from backend.features.posts.service import PostService
from backend.features.users.service import list_users
from backend.models.actor import Actor


router = APIRouter(prefix="/api/admin", tags=["admin"])


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RoleRequest(BaseModel):
    role: str


@router.get("/posts/pending")
def pending_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    items, total = posts.list_posts(status="pending", page=page, limit=limit, viewer=admin)
    return {
        "success": True,
        "data": [p.model_dump(mode="json") for p in items],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


@router.get("/stats")
def stats(
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.stats()}


@router.put("/posts/{post_id}/approve")
def approve_post(
    post_id: str,
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.approve(post_id, admin).model_dump(mode="json")}


@router.put("/posts/{post_id}/reject")
def reject_post(
    post_id: str,
    body: RejectRequest,
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.reject(post_id, body.reason, admin).model_dump(mode="json")}


@router.put("/posts/{post_id}/publish")
def publish_post(
    post_id: str,
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.publish_override(post_id, admin).model_dump(mode="json")}


@router.post("/posts/{post_id}/resync")
def resync_post(
    post_id: str,
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.resync_counters(post_id).model_dump(mode="json")}


@router.put("/users/{user_id}/role")
def update_role(
    user_id: str,
    body: RoleRequest,
    admin: Actor = Depends(require_admin),
):
    user = set_role(user_id, body.role, actor_id=admin.identity)
    return {"success": True, "data": user.to_public()}


@router.get("/analytics")
def analytics(
    period: int = Query(30, ge=1, le=365),
    admin: Actor = Depends(require_admin),
    posts: PostService = Depends(get_post_service),
):
    return {"success": True, "data": posts.analytics(days=period)}


@router.get("/users")
def users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    admin: Actor = Depends(require_admin),
):
    items, total = list_users(page=page, limit=limit, search=search, role=role)
    return {
        "success": True,
        "data": [u.to_public() for u in items],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }
