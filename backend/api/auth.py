"""
Auth API routes.

- GET /api/auth/me   current user: profile, role and AI usage for this period
"""
from fastapi import APIRouter, Depends

from backend.api.deps import get_quota_tracker
from backend.core.auth import get_current_actor
from backend.features.entitlements.service import get_entitlement
from backend.features.usage.quota import UsageQuotaTracker
from backend.models.actor import Actor


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("/me")
def me(
    actor: Actor = Depends(get_current_actor),
    quota: UsageQuotaTracker = Depends(get_quota_tracker),
):
    user = get_entitlement(actor.identity)
    return {
        "success": True,
        "user": user.to_public(),
        "usage": quota.usage_status(actor.identity).to_dict(),
    }
