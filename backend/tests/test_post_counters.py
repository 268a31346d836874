"""
Post counters: views, likes, comments.

like_count and comment_count summarize the like and comment relations and
must always match them, including under concurrent toggles and cascading
deletes.
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.core.errors import NotAuthorError, NotFoundError, TransientStoreError
from backend.features.entitlements.roles import Role
from backend.features.ledger.memory import InMemoryLedgerStore
from backend.features.posts.service import PostService, comment_like_key, like_key
from backend.models.actor import Actor


AUTHOR = Actor(identity="author_1")
READER = Actor(identity="reader_1", email="reader@example.com")
ADMIN = Actor(identity="admin_1", role=Role.ADMIN)

CONTENT = "Long enough content for a real post body, well past fifty characters."


@pytest.fixture
def post(post_service):
    created = post_service.create_post(AUTHOR, title="Counted post", content=CONTENT)
    return post_service.publish_override(created.id, ADMIN)


def test_view_increments_on_every_read(post_service, post):
    assert post_service.view_post(post.id).views == 1
    assert post_service.view_post(post.id).views == 2
    assert post_service.get_post(post.id).views == 2


def test_view_increment_failure_is_swallowed(post_service, post, monkeypatch):
    def broken(*args, **kwargs):
        raise TransientStoreError("store down")

    monkeypatch.setattr(post_service._store, "atomic_increment", broken)

    viewed = post_service.view_post(post.id)
    assert viewed.id == post.id
    assert viewed.views == 0


def test_like_toggle_round_trip(post_service, post, ledger_store):
    liked = post_service.toggle_like(post.id, "reader_1")
    assert (liked.liked, liked.like_count) == (True, 1)
    assert ledger_store.get("post_likes", like_key(post.id, "reader_1")) is not None

    unliked = post_service.toggle_like(post.id, "reader_1")
    assert (unliked.liked, unliked.like_count) == (False, 0)
    assert ledger_store.get("post_likes", like_key(post.id, "reader_1")) is None


def test_likes_from_different_users_accumulate(post_service, post):
    for n in range(3):
        post_service.toggle_like(post.id, f"reader_{n}")
    assert post_service.get_post(post.id).like_count == 3


def test_like_missing_post(post_service):
    with pytest.raises(NotFoundError):
        post_service.toggle_like("missing", "reader_1")


def test_concurrent_toggles_keep_count_equal_to_relation(post_service, post, ledger_store):
    def toggle(n):
        try:
            return post_service.toggle_like(post.id, f"reader_{n % 4}")
        except TransientStoreError:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(toggle, range(40)))

    likes = ledger_store.find("post_likes", post_id=post.id)
    assert post_service.get_post(post.id).like_count == len(likes)


def test_like_rolled_back_when_counter_write_fails(post_service, post, ledger_store, monkeypatch):
    def broken(*args, **kwargs):
        raise TransientStoreError("store down")

    monkeypatch.setattr(ledger_store, "atomic_increment", broken)

    with pytest.raises(TransientStoreError):
        post_service.toggle_like(post.id, "reader_1")
    assert ledger_store.find("post_likes", post_id=post.id) == []


def test_comments_move_comment_count(post_service, post):
    first = post_service.add_comment(post.id, READER, "Nice read")
    post_service.add_comment(post.id, AUTHOR, "Thanks!")
    assert post_service.get_post(post.id).comment_count == 2
    assert first.author_name == "reader"

    post_service.remove_comment(first.id, READER)
    assert post_service.get_post(post.id).comment_count == 1

    items, total = post_service.list_comments(post.id)
    assert total == 1
    assert items[0].content == "Thanks!"


def test_comment_edit_and_delete_need_ownership(post_service, post):
    comment = post_service.add_comment(post.id, READER, "Nice read")

    with pytest.raises(NotAuthorError):
        post_service.update_comment(comment.id, AUTHOR, "edited by someone else")
    with pytest.raises(NotAuthorError):
        post_service.remove_comment(comment.id, AUTHOR)

    edited = post_service.update_comment(comment.id, READER, "  Really nice read  ")
    assert edited.content == "Really nice read"

    post_service.remove_comment(comment.id, ADMIN)
    assert post_service.get_post(post.id).comment_count == 0


def test_comment_on_hidden_post_refused(post_service):
    draft = post_service.create_post(AUTHOR, title="Hidden draft", content=CONTENT)
    with pytest.raises(NotFoundError):
        post_service.add_comment(draft.id, READER, "can I see this?")


def test_delete_post_cascades(post_service, post, ledger_store):
    post_service.add_comment(post.id, READER, "Nice read")
    post_service.toggle_like(post.id, "reader_1")
    post_service.toggle_like(post.id, "reader_2")

    removed = post_service.delete_post(post.id, AUTHOR)

    assert removed == {"comments": 1, "likes": 2}
    assert ledger_store.get("posts", post.id) is None
    assert ledger_store.find("comments", post_id=post.id) == []
    assert ledger_store.find("post_likes", post_id=post.id) == []


def test_delete_post_by_stranger_refused(post_service, post):
    with pytest.raises(NotAuthorError):
        post_service.delete_post(post.id, READER)


def test_resync_repairs_drift(clock):
    store = InMemoryLedgerStore()
    service = PostService(store=store, clock=clock)
    post = service.create_post(AUTHOR, title="Drifted post", content=CONTENT)
    service.publish_override(post.id, ADMIN)
    service.toggle_like(post.id, "reader_1")
    service.add_comment(post.id, READER, "hello")

    # Simulate a crash between a relation write and its counter write
    store.atomic_increment("posts", post.id, "like_count", 5)
    store.atomic_increment("posts", post.id, "comment_count", -1)

    repaired = service.resync_counters(post.id)
    assert (repaired.like_count, repaired.comment_count) == (1, 1)

    unchanged = service.resync_counters(post.id)
    assert unchanged.version == repaired.version


def test_comment_like_toggle_round_trip(post_service, post, ledger_store):
    comment = post_service.add_comment(post.id, READER, "Likeable")

    liked = post_service.toggle_comment_like(comment.id, "author_1")
    assert (liked.liked, liked.like_count) == (True, 1)
    assert ledger_store.get("comment_likes", comment_like_key(comment.id, "author_1")) is not None
    assert post_service.get_post(post.id).like_count == 0

    unliked = post_service.toggle_comment_like(comment.id, "author_1")
    assert (unliked.liked, unliked.like_count) == (False, 0)
    assert ledger_store.find("comment_likes", comment_id=comment.id) == []


def test_comment_like_missing_comment(post_service):
    with pytest.raises(NotFoundError):
        post_service.toggle_comment_like("missing", "reader_1")


def test_comment_on_hidden_post_is_hidden(post_service):
    draft = post_service.create_post(AUTHOR, title="Hidden draft", content=CONTENT)
    comment = post_service.add_comment(draft.id, AUTHOR, "note to self")

    assert post_service.get_comment(comment.id, AUTHOR).id == comment.id
    with pytest.raises(NotFoundError):
        post_service.get_comment(comment.id, READER)


def test_comment_likes_go_with_their_comment(post_service, post, ledger_store):
    kept = post_service.add_comment(post.id, READER, "kept")
    dropped = post_service.add_comment(post.id, READER, "dropped")
    post_service.toggle_comment_like(kept.id, "author_1")
    post_service.toggle_comment_like(dropped.id, "author_1")
    post_service.toggle_comment_like(dropped.id, "reader_2")

    post_service.remove_comment(dropped.id, READER)
    assert ledger_store.find("comment_likes", comment_id=dropped.id) == []
    assert len(ledger_store.find("comment_likes", comment_id=kept.id)) == 1

    removed = post_service.delete_post(post.id, AUTHOR)
    assert removed == {"comments": 1, "likes": 1}
    assert ledger_store.find("comment_likes") == []


def test_resync_repairs_comment_like_drift(post_service, post, ledger_store):
    comment = post_service.add_comment(post.id, READER, "drifting")
    post_service.toggle_comment_like(comment.id, "author_1")
    ledger_store.atomic_increment("comments", comment.id, "like_count", 3)

    post_service.resync_counters(post.id)
    assert ledger_store.get("comments", comment.id)["like_count"] == 1


def test_author_stats_cover_every_status(post_service, post):
    post_service.create_post(AUTHOR, title="Draft", content=CONTENT)
    pending = post_service.create_post(AUTHOR, title="Pending", content=CONTENT)
    post_service.submit(pending.id, AUTHOR)
    post_service.view_post(post.id)
    post_service.toggle_like(post.id, "reader_1")
    post_service.add_comment(post.id, READER, "hi")
    post_service.create_post(READER, title="Not mine", content=CONTENT)

    stats = post_service.author_stats("author_1")

    assert stats == {
        "totalPosts": 3,
        "publishedPosts": 1,
        "draftPosts": 1,
        "pendingPosts": 1,
        "rejectedPosts": 0,
        "totalViews": 1,
        "totalLikes": 1,
        "totalComments": 1,
    }


def test_analytics_counts_only_the_window(post_service, clock, make_user):
    make_user("old_user")
    old = post_service.create_post(AUTHOR, title="Old", content=CONTENT)
    post_service.publish_override(old.id, ADMIN)

    clock.advance(days=40)
    make_user("new_user", Role.PREMIUM)
    post_service.create_post(AUTHOR, title="New today", content=CONTENT)
    clock.advance(days=1)
    fresh = post_service.create_post(AUTHOR, title="New tomorrow", content=CONTENT)
    post_service.publish_override(fresh.id, ADMIN)

    report = post_service.analytics(days=30)

    assert report["postTrends"] == [
        {"date": "2024-04-24", "count": 1},
        {"date": "2024-04-25", "count": 1},
    ]
    assert report["userTrends"] == [{"date": "2024-04-24", "count": 1}]
    assert report["summary"] == {
        "totalPosts": 2,
        "publishedPosts": 1,
        "totalUsers": 1,
        "premiumUsers": 1,
    }
