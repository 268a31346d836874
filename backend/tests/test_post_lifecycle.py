"""Post status state machine and moderation flow."""
import pytest

from backend.core.errors import (
    InvalidTransitionError,
    NotAuthorError,
    NotFoundError,
    PermissionError,
    ValidationError,
)
from backend.features.entitlements.roles import Role
from backend.features.posts.lifecycle import PostStatus, can_transition, require_status, transition_fields
from backend.models.actor import Actor


AUTHOR = Actor(identity="author_1", name="Ann")
STRANGER = Actor(identity="stranger_1")
ADMIN = Actor(identity="admin_1", role=Role.ADMIN)

CONTENT = "Long enough content for a real post body, well past fifty characters."


@pytest.fixture
def draft(post_service):
    return post_service.create_post(AUTHOR, title="Hello world", content=CONTENT, category="tech")


@pytest.mark.parametrize("current,target,allowed", [
    ("draft", "pending", True),
    ("draft", "published", True),
    ("draft", "rejected", False),
    ("pending", "published", True),
    ("pending", "rejected", True),
    ("pending", "draft", False),
    ("rejected", "pending", True),
    ("rejected", "published", False),
    ("published", "draft", False),
    ("published", "pending", False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_require_status_narrows_sources():
    with pytest.raises(InvalidTransitionError) as exc_info:
        require_status("draft", PostStatus.PUBLISHED, PostStatus.PENDING)
    assert exc_info.value.current == "draft"
    assert exc_info.value.target == "published"


def test_transition_fields_keep_published_at_and_reason_consistent(clock):
    now = clock()
    assert transition_fields(PostStatus.PUBLISHED, now)["published_at"] == now
    assert transition_fields(PostStatus.PENDING, now)["published_at"] is None
    assert transition_fields(PostStatus.REJECTED, now, "spam")["rejection_reason"] == "spam"
    assert transition_fields(PostStatus.PENDING, now, "spam")["rejection_reason"] is None


def test_create_starts_as_draft(draft):
    assert draft.status == "draft"
    assert draft.author_id == "author_1"
    assert draft.author_name == "Ann"
    assert (draft.views, draft.like_count, draft.comment_count) == (0, 0, 0)
    assert draft.published_at is None
    assert draft.excerpt == CONTENT


def test_create_requires_title(post_service):
    with pytest.raises(ValidationError):
        post_service.create_post(AUTHOR, title="   ", content=CONTENT)


def test_submit_approve_publishes(post_service, draft, clock):
    pending = post_service.submit(draft.id, AUTHOR)
    assert pending.status == "pending"

    published = post_service.approve(draft.id, ADMIN)
    assert published.status == "published"
    assert published.published_at == clock()


def test_approve_on_draft_is_invalid_transition(post_service, draft):
    with pytest.raises(InvalidTransitionError):
        post_service.approve(draft.id, ADMIN)
    assert post_service.get_post(draft.id, AUTHOR).status == "draft"


def test_reject_resubmit_approve_clears_reason(post_service, draft):
    post_service.submit(draft.id, AUTHOR)
    rejected = post_service.reject(draft.id, "Needs sources", ADMIN)
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Needs sources"

    resubmitted = post_service.submit(draft.id, AUTHOR)
    assert resubmitted.status == "pending"
    assert resubmitted.rejection_reason is None

    published = post_service.approve(draft.id, ADMIN)
    assert published.status == "published"
    assert published.rejection_reason is None


def test_reject_requires_reason(post_service, draft):
    post_service.submit(draft.id, AUTHOR)
    with pytest.raises(ValidationError):
        post_service.reject(draft.id, "  ", ADMIN)


def test_moderation_is_admin_only(post_service, draft):
    post_service.submit(draft.id, AUTHOR)
    with pytest.raises(PermissionError):
        post_service.approve(draft.id, AUTHOR)
    with pytest.raises(PermissionError):
        post_service.reject(draft.id, "no", AUTHOR)
    with pytest.raises(PermissionError):
        post_service.publish_override(draft.id, AUTHOR)


def test_publish_override_skips_moderation(post_service, draft):
    published = post_service.publish_override(draft.id, ADMIN)
    assert published.status == "published"

    with pytest.raises(InvalidTransitionError):
        post_service.submit(draft.id, AUTHOR)


def test_only_author_or_admin_may_submit(post_service, draft):
    with pytest.raises(NotAuthorError):
        post_service.submit(draft.id, STRANGER)
    assert post_service.submit(draft.id, ADMIN).status == "pending"


def test_edit_keeps_status_and_counters(post_service, draft):
    post_service.publish_override(draft.id, ADMIN)
    post_service.toggle_like(draft.id, "reader_1")

    edited = post_service.update_post(draft.id, AUTHOR, {"title": "Hello again", "tags": ["a", "b"]})

    assert edited.title == "Hello again"
    assert edited.tags == ["a", "b"]
    assert edited.status == "published"
    assert edited.like_count == 1


def test_edit_rejects_status_and_counter_fields(post_service, draft):
    with pytest.raises(ValidationError):
        post_service.update_post(draft.id, AUTHOR, {"status": "published"})
    with pytest.raises(ValidationError):
        post_service.update_post(draft.id, AUTHOR, {"like_count": 100})


def test_edit_by_stranger_refused(post_service, draft):
    with pytest.raises(NotAuthorError):
        post_service.update_post(draft.id, STRANGER, {"title": "Hijacked title"})


def test_unpublished_post_hidden_from_others(post_service, draft):
    with pytest.raises(NotFoundError):
        post_service.get_post(draft.id)
    with pytest.raises(NotFoundError):
        post_service.get_post(draft.id, STRANGER)
    assert post_service.get_post(draft.id, AUTHOR).id == draft.id
    assert post_service.get_post(draft.id, ADMIN).id == draft.id


def test_list_posts_published_by_default(post_service, clock):
    first = post_service.create_post(AUTHOR, title="First post", content=CONTENT, category="tech")
    clock.advance(minutes=1)
    second = post_service.create_post(AUTHOR, title="Second post", content=CONTENT, category="life")
    clock.advance(minutes=1)
    post_service.create_post(AUTHOR, title="Still a draft", content=CONTENT, category="tech")
    post_service.publish_override(first.id, ADMIN)
    post_service.publish_override(second.id, ADMIN)

    items, total = post_service.list_posts()
    assert total == 2
    assert [p.id for p in items] == [second.id, first.id]

    items, total = post_service.list_posts(category="tech")
    assert [p.id for p in items] == [first.id]

    items, total = post_service.list_posts(search="SECOND")
    assert [p.id for p in items] == [second.id]

    items, total = post_service.list_posts(page=2, limit=1)
    assert total == 2
    assert [p.id for p in items] == [first.id]


def test_list_unpublished_requires_owner_or_admin(post_service, draft):
    with pytest.raises(PermissionError):
        post_service.list_posts(status="draft", viewer=STRANGER)
    with pytest.raises(PermissionError):
        post_service.list_posts(status="draft", author_id="author_1", viewer=STRANGER)

    items, _ = post_service.list_posts(status="draft", author_id="author_1", viewer=AUTHOR)
    assert [p.id for p in items] == [draft.id]
    items, _ = post_service.list_posts(status="draft", viewer=ADMIN)
    assert [p.id for p in items] == [draft.id]


def test_list_unknown_status(post_service):
    with pytest.raises(ValidationError):
        post_service.list_posts(status="archived", viewer=ADMIN)


def test_stats(post_service, draft, make_user):
    make_user("author_1")
    other = post_service.create_post(AUTHOR, title="Another post", content=CONTENT)
    post_service.submit(draft.id, AUTHOR)
    post_service.publish_override(other.id, ADMIN)
    post_service.add_comment(other.id, AUTHOR, "first!")

    assert post_service.stats() == {
        "totalUsers": 1,
        "totalPosts": 2,
        "pendingPosts": 1,
        "publishedPosts": 1,
        "totalComments": 1,
    }
