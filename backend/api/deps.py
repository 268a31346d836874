"""
Service dependencies for routers.

Each returns a service bound to the active ledger store; tests swap them via
app.dependency_overrides or set_ledger_store_for_tests().
"""
from backend.features.ai.service import AIService
from backend.features.posts.service import PostService
from backend.features.usage.quota import UsageQuotaTracker
from backend.features.webhooks.clerk_events import ClerkWebhookSource
from backend.features.webhooks.intake import WebhookIntake
from backend.features.webhooks.stripe_events import StripeWebhookSource


def get_post_service() -> PostService:
    return PostService()


def get_quota_tracker() -> UsageQuotaTracker:
    return UsageQuotaTracker()


def get_ai_service() -> AIService:
    return AIService(quota=get_quota_tracker())


def get_webhook_intake() -> WebhookIntake:
    return WebhookIntake()


def get_stripe_source() -> StripeWebhookSource:
    return StripeWebhookSource()


def get_clerk_source() -> ClerkWebhookSource:
    return ClerkWebhookSource()
