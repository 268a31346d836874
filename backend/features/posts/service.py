"""
Post service.

Handles:
- Post CRUD and the moderation lifecycle (submit / approve / reject / override)
- Counter mutations: views, post likes, comment likes, comments
- Cascading deletes (single post, or everything authored by an identity)
- Counter resync (like_count / comment_count are caches of their relations)
- Author dashboard totals and admin activity analytics

Counters are only ever changed by atomic increments paired with the relation
write they summarize; content edits never touch counters or status.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from backend.core.clock import Clock, as_utc, utc_now
from backend.core.errors import (
    NotAuthorError,
    NotFoundError,
    PermissionError,
    ValidationError,
    VersionConflictError,
)
from backend.core.logging import log_event
from backend.features.entitlements.roles import Role
from backend.features.ledger.service import get_ledger_store, retry_on_conflict
from backend.features.ledger.store import LedgerRecord, LedgerStore
from backend.features.posts.lifecycle import PostStatus, require_status, transition_fields
from backend.features.users.service import display_name_from_profile
from backend.models.actor import Actor
from backend.models.post import Comment, Post


logger = logging.getLogger("inkwell")

CONTENT_FIELDS = ("title", "content", "excerpt", "category", "tags", "thumbnail")
EXCERPT_LENGTH = 200

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class LikeResult:
    liked: bool
    like_count: int


def like_key(post_id: str, user_id: str) -> str:
    return f"{post_id}:{user_id}"


def comment_like_key(comment_id: str, user_id: str) -> str:
    return f"{comment_id}:{user_id}"


def derive_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    text = " ".join((content or "").split())
    if len(text) <= length:
        return text
    return text[:length].rsplit(" ", 1)[0] + "..."


def _created_at(record: LedgerRecord) -> datetime:
    return as_utc(record.get("created_at")) or _EPOCH


class PostService:
    """Content lifecycle state machine over the ledger store."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._store = store or get_ledger_store()
        self._clock = clock
        self._new_id = id_factory

    # ------------------------------------------------------------------
    # Loading and authorization
    # ------------------------------------------------------------------

    def _load(self, post_id: str) -> Post:
        record = self._store.get("posts", post_id)
        if record is None:
            raise NotFoundError(f"Post {post_id} not found")
        return Post.from_record(record)

    def _load_comment(self, comment_id: str) -> Comment:
        record = self._store.get("comments", comment_id)
        if record is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        return Comment.from_record(record)

    @staticmethod
    def _require_manager(owner_id: str, actor: Actor, what: str) -> None:
        if not actor.can_manage(owner_id):
            raise NotAuthorError(f"Not authorized to modify this {what}")

    @staticmethod
    def _require_admin(actor: Actor) -> None:
        if not actor.is_admin:
            raise PermissionError("Admin access required")

    def _require_active(self, identity: str) -> None:
        """Deleted identities may not write; their content was already purged."""
        if self._store.get("tombstones", identity) is not None:
            raise PermissionError("Account has been deleted", code="account_deleted")

    def _undo_if_deleted(self, identity: str, undo: Callable[[], Any]) -> None:
        # user_deleted tombstones before purging, so a write that lands after
        # the purge started sees the tombstone here and removes itself
        try:
            self._require_active(identity)
        except PermissionError:
            undo()
            raise

    @staticmethod
    def _visible_to(post: Post, viewer: Optional[Actor]) -> bool:
        if post.status == PostStatus.PUBLISHED.value:
            return True
        return viewer is not None and viewer.can_manage(post.author_id)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_post(
        self,
        actor: Actor,
        *,
        title: str,
        content: str,
        category: Optional[str] = None,
        excerpt: Optional[str] = None,
        tags: Optional[List[str]] = None,
        thumbnail: Optional[str] = None,
    ) -> Post:
        """Create a post in draft, authored by the actor."""
        if not title or not title.strip():
            raise ValidationError("Title is required")
        self._require_active(actor.identity)
        now = self._clock()
        post_id = self._new_id()
        author_name = actor.name or display_name_from_profile(None, None, actor.email)
        record = self._store.insert(
            "posts",
            post_id,
            {
                "author_id": actor.identity,
                "author_name": author_name,
                "title": title.strip(),
                "content": content or "",
                "excerpt": excerpt if excerpt is not None else derive_excerpt(content),
                "category": category,
                "tags": list(tags or []),
                "thumbnail": thumbnail,
                "status": PostStatus.DRAFT.value,
                "views": 0,
                "like_count": 0,
                "comment_count": 0,
                "published_at": None,
                "rejection_reason": None,
                "created_at": now,
                "updated_at": now,
            },
        )
        if record is None:
            raise VersionConflictError(f"Post id {post_id} already in use")
        self._undo_if_deleted(actor.identity, lambda: self._store.delete("posts", post_id))
        log_event("info", "posts.created", user_id=actor.identity, post_id=post_id)
        return Post.from_record(record)

    def update_post(self, post_id: str, actor: Actor, fields: Dict[str, Any]) -> Post:
        """Edit content fields (author or admin). Status and counters are not editable."""
        unknown = sorted(set(fields) - set(CONTENT_FIELDS))
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(unknown)}")
        if "title" in fields and not (fields["title"] or "").strip():
            raise ValidationError("Title is required")

        def attempt() -> Post:
            post = self._load(post_id)
            self._require_manager(post.author_id, actor, "post")
            changes = dict(fields)
            if "tags" in changes:
                changes["tags"] = list(changes["tags"] or [])
            changes["updated_at"] = self._clock()
            record = self._store.compare_and_swap("posts", post_id, post.version, changes)
            return Post.from_record(record)

        return retry_on_conflict(attempt, description="update_post")

    def get_post(self, post_id: str, viewer: Optional[Actor] = None) -> Post:
        """
        Read a post.

        Unpublished posts are only visible to their author and admins; anyone
        else gets NotFoundError so existence is not leaked.
        """
        post = self._load(post_id)
        if not self._visible_to(post, viewer):
            raise NotFoundError(f"Post {post_id} not found")
        return post

    def view_post(self, post_id: str, viewer: Optional[Actor] = None) -> Post:
        """Read a post and count the view."""
        post = self.get_post(post_id, viewer)
        views = self.increment_view(post_id)
        if views is None:
            return post
        return post.model_copy(update={"views": views})

    def list_posts(
        self,
        *,
        status: str = PostStatus.PUBLISHED.value,
        category: Optional[str] = None,
        author_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        viewer: Optional[Actor] = None,
    ) -> Tuple[List[Post], int]:
        """
        List posts newest first.

        Returns:
            (page of posts, total matching)

        Raises:
            ValidationError: Unknown status or bad pagination
            PermissionError: Listing unpublished posts of another author
        """
        try:
            wanted = PostStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be >= 1")
        if wanted is not PostStatus.PUBLISHED:
            if viewer is None or not (viewer.is_admin or (author_id and viewer.identity == author_id)):
                raise PermissionError("Not authorized to list unpublished posts")

        filters: Dict[str, Any] = {"status": wanted.value}
        if category:
            filters["category"] = category
        if author_id:
            filters["author_id"] = author_id
        records = self._store.find("posts", **filters)

        if search:
            needle = search.lower()
            records = [
                r for r in records
                if needle in (r.get("title") or "").lower() or needle in (r.get("content") or "").lower()
            ]

        records.sort(key=_created_at, reverse=True)
        start = (page - 1) * limit
        return [Post.from_record(r) for r in records[start:start + limit]], len(records)

    def delete_post(self, post_id: str, actor: Actor) -> Dict[str, int]:
        """Delete a post (author or admin, any status): comments, then likes, then the post."""
        post = self._load(post_id)
        self._require_manager(post.author_id, actor, "post")
        removed = self._purge_post(post_id)
        log_event("info", "posts.deleted", user_id=actor.identity, post_id=post_id, extra=removed)
        return removed

    def _purge_post(self, post_id: str) -> Dict[str, int]:
        comments = likes = 0
        for record in self._store.find("comments", post_id=post_id):
            likes += self._purge_comment_likes(record.key)
            if self._store.delete("comments", record.key):
                comments += 1
        likes += sum(
            1 for record in self._store.find("post_likes", post_id=post_id)
            if self._store.delete("post_likes", record.key)
        )
        self._store.delete("posts", post_id)
        return {"comments": comments, "likes": likes}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _transition(
        self,
        post_id: str,
        target: PostStatus,
        allowed: Tuple[PostStatus, ...],
        authorize: Callable[[Post], None],
        reason: Optional[str] = None,
    ) -> Post:
        def attempt() -> Post:
            post = self._load(post_id)
            authorize(post)
            current = require_status(post.status, target, *allowed)
            now = self._clock()
            record = self._store.compare_and_swap(
                "posts",
                post_id,
                post.version,
                transition_fields(target, now, reason),
            )
            log_event(
                "info",
                "posts.transition",
                post_id=post_id,
                extra={"from": current.value, "to": target.value},
            )
            return Post.from_record(record)

        return retry_on_conflict(attempt, description=f"post transition to {target.value}")

    def submit(self, post_id: str, actor: Actor) -> Post:
        """draft | rejected -> pending (author or admin). Clears the last rejection reason."""
        return self._transition(
            post_id,
            PostStatus.PENDING,
            (PostStatus.DRAFT, PostStatus.REJECTED),
            lambda post: self._require_manager(post.author_id, actor, "post"),
        )

    def approve(self, post_id: str, actor: Actor) -> Post:
        """pending -> published (admin)."""
        self._require_admin(actor)
        return self._transition(post_id, PostStatus.PUBLISHED, (PostStatus.PENDING,), lambda post: None)

    def reject(self, post_id: str, reason: str, actor: Actor) -> Post:
        """pending -> rejected (admin), storing the reason."""
        self._require_admin(actor)
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return self._transition(
            post_id,
            PostStatus.REJECTED,
            (PostStatus.PENDING,),
            lambda post: None,
            reason=reason.strip(),
        )

    def publish_override(self, post_id: str, actor: Actor) -> Post:
        """draft -> published, skipping moderation (admin)."""
        self._require_admin(actor)
        return self._transition(post_id, PostStatus.PUBLISHED, (PostStatus.DRAFT,), lambda post: None)

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def increment_view(self, post_id: str) -> Optional[int]:
        """views += 1 on any status. Failures are logged, never raised."""
        try:
            return self._store.atomic_increment("posts", post_id, "views", 1)
        except Exception as exc:
            log_event(
                "warning",
                "posts.view_increment_failed",
                post_id=post_id,
                error_code=getattr(exc, "code", exc.__class__.__name__),
            )
            return None

    def _toggle_membership(
        self,
        relation: str,
        key: str,
        fields: Dict[str, Any],
        counter: Tuple[str, str],
        user_id: str,
        description: str,
    ) -> LikeResult:
        """
        Flip (user, target) membership in a like relation.

        The outcome is derived from the relation itself: the unique insert
        either creates the like or finds it present, in which case it is
        removed. The target's like_count moves by exactly the observed
        membership change.
        """
        counter_table, counter_key = counter

        def attempt() -> LikeResult:
            inserted = self._store.insert(relation, key, {**fields, "created_at": self._clock()})
            if inserted is not None:
                self._undo_if_deleted(user_id, lambda: self._store.delete(relation, key))
                try:
                    count = self._store.atomic_increment(counter_table, counter_key, "like_count", 1)
                except Exception:
                    # Undo the membership so counter and relation stay paired
                    self._store.delete(relation, key)
                    raise
                return LikeResult(liked=True, like_count=count)

            if self._store.delete(relation, key):
                count = self._store.atomic_increment(counter_table, counter_key, "like_count", -1)
                # May dip below zero while a concurrent like's increment is in flight
                return LikeResult(liked=False, like_count=max(count, 0))

            # Removed by a concurrent toggle between insert and delete
            raise VersionConflictError(f"{relation}/{key} changed concurrently")

        return retry_on_conflict(attempt, description=description)

    def toggle_like(self, post_id: str, user_id: str) -> LikeResult:
        """Like or unlike a post based on the current like relation."""
        self._load(post_id)
        self._require_active(user_id)
        result = self._toggle_membership(
            "post_likes",
            like_key(post_id, user_id),
            {"post_id": post_id, "user_id": user_id},
            ("posts", post_id),
            user_id,
            "toggle_like",
        )
        log_event(
            "info",
            "posts.like_toggled",
            user_id=user_id,
            post_id=post_id,
            extra={"liked": result.liked, "like_count": result.like_count},
        )
        return result

    def get_comment(self, comment_id: str, viewer: Optional[Actor] = None) -> Comment:
        """Read a comment; hidden when its post is hidden from the viewer."""
        comment = self._load_comment(comment_id)
        self.get_post(comment.post_id, viewer)
        return comment

    def toggle_comment_like(self, comment_id: str, user_id: str) -> LikeResult:
        comment = self._load_comment(comment_id)
        self._require_active(user_id)
        result = self._toggle_membership(
            "comment_likes",
            comment_like_key(comment_id, user_id),
            {"comment_id": comment_id, "user_id": user_id},
            ("comments", comment_id),
            user_id,
            "toggle_comment_like",
        )
        log_event(
            "info",
            "comments.like_toggled",
            user_id=user_id,
            post_id=comment.post_id,
            extra={"comment_id": comment_id, "liked": result.liked, "like_count": result.like_count},
        )
        return result

    def resync_counters(self, post_id: str) -> Post:
        """Recompute like_count and comment_count (and each comment's like_count) from their relations."""
        def attempt() -> Post:
            post = self._load(post_id)
            likes = len(self._store.find("post_likes", post_id=post_id))
            comments = len(self._store.find("comments", post_id=post_id))
            if (likes, comments) == (post.like_count, post.comment_count):
                return post
            record = self._store.compare_and_swap(
                "posts",
                post_id,
                post.version,
                {"like_count": likes, "comment_count": comments},
            )
            log_event(
                "warning",
                "posts.counters_resynced",
                post_id=post_id,
                extra={
                    "like_count": f"{post.like_count}->{likes}",
                    "comment_count": f"{post.comment_count}->{comments}",
                },
            )
            return Post.from_record(record)

        post = retry_on_conflict(attempt, description="resync_counters")
        for record in self._store.find("comments", post_id=post_id):
            self._resync_comment_likes(record.key)
        return post

    def _resync_comment_likes(self, comment_id: str) -> None:
        def attempt() -> None:
            record = self._store.get("comments", comment_id)
            if record is None:
                return
            likes = len(self._store.find("comment_likes", comment_id=comment_id))
            current = int(record.get("like_count") or 0)
            if likes == current:
                return
            self._store.compare_and_swap("comments", comment_id, record.version, {"like_count": likes})
            log_event(
                "warning",
                "comments.counters_resynced",
                post_id=record["post_id"],
                extra={"comment_id": comment_id, "like_count": f"{current}->{likes}"},
            )

        retry_on_conflict(attempt, description="resync_comment_likes")

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def add_comment(self, post_id: str, actor: Actor, content: str) -> Comment:
        if not content or not content.strip():
            raise ValidationError("Comment content is required")
        self.get_post(post_id, actor)
        self._require_active(actor.identity)

        now = self._clock()
        comment_id = self._new_id()
        author_name = actor.name or display_name_from_profile(None, None, actor.email)
        record = self._store.insert(
            "comments",
            comment_id,
            {
                "post_id": post_id,
                "author_id": actor.identity,
                "author_name": author_name,
                "content": content.strip(),
                "like_count": 0,
                "created_at": now,
                "updated_at": now,
            },
        )
        if record is None:
            raise VersionConflictError(f"Comment id {comment_id} already in use")
        self._undo_if_deleted(actor.identity, lambda: self._store.delete("comments", comment_id))
        try:
            self._store.atomic_increment("posts", post_id, "comment_count", 1)
        except Exception:
            self._store.delete("comments", comment_id)
            raise
        log_event("info", "comments.added", user_id=actor.identity, post_id=post_id)
        return Comment.from_record(record)

    def update_comment(self, comment_id: str, actor: Actor, content: str) -> Comment:
        if not content or not content.strip():
            raise ValidationError("Comment content is required")

        def attempt() -> Comment:
            record = self._store.get("comments", comment_id)
            if record is None:
                raise NotFoundError(f"Comment {comment_id} not found")
            self._require_manager(record["author_id"], actor, "comment")
            updated = self._store.compare_and_swap(
                "comments",
                comment_id,
                record.version,
                {"content": content.strip(), "updated_at": self._clock()},
            )
            return Comment.from_record(updated)

        return retry_on_conflict(attempt, description="update_comment")

    def remove_comment(self, comment_id: str, actor: Actor) -> None:
        comment = self._load_comment(comment_id)
        self._require_manager(comment.author_id, actor, "comment")
        self._delete_comment(comment)
        log_event("info", "comments.removed", user_id=actor.identity, post_id=comment.post_id)

    def _delete_comment(self, comment: Comment) -> bool:
        if not self._store.delete("comments", comment.id):
            return False
        self._purge_comment_likes(comment.id)
        try:
            self._store.atomic_increment("posts", comment.post_id, "comment_count", -1)
        except NotFoundError:
            pass  # post already gone
        return True

    def _purge_comment_likes(self, comment_id: str) -> int:
        return sum(
            1 for record in self._store.find("comment_likes", comment_id=comment_id)
            if self._store.delete("comment_likes", record.key)
        )

    def list_comments(
        self,
        post_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        viewer: Optional[Actor] = None,
    ) -> Tuple[List[Comment], int]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be >= 1")
        self.get_post(post_id, viewer)
        records = sorted(self._store.find("comments", post_id=post_id), key=_created_at, reverse=True)
        start = (page - 1) * limit
        return [Comment.from_record(r) for r in records[start:start + limit]], len(records)

    # ------------------------------------------------------------------
    # Identity cascade and stats
    # ------------------------------------------------------------------

    def purge_identity_content(self, identity: str) -> Dict[str, int]:
        """
        Remove everything an identity authored or liked.

        Own posts go with all their comments and likes; comments, post likes
        and comment likes elsewhere are removed with their counters
        decremented. Safe to
        re-run after a partial failure.
        """
        posts = comments = likes = 0
        for record in self._store.find("posts", author_id=identity):
            removed = self._purge_post(record.key)
            posts += 1
            comments += removed["comments"]
            likes += removed["likes"]

        for record in self._store.find("comments", author_id=identity):
            if self._delete_comment(Comment.from_record(record)):
                comments += 1

        for record in self._store.find("post_likes", user_id=identity):
            if self._store.delete("post_likes", record.key):
                likes += 1
                try:
                    self._store.atomic_increment("posts", record["post_id"], "like_count", -1)
                except NotFoundError:
                    pass

        for record in self._store.find("comment_likes", user_id=identity):
            if self._store.delete("comment_likes", record.key):
                likes += 1
                try:
                    self._store.atomic_increment("comments", record["comment_id"], "like_count", -1)
                except NotFoundError:
                    pass

        return {"posts": posts, "comments": comments, "likes": likes}

    def stats(self) -> Dict[str, int]:
        return {
            "totalUsers": len(self._store.find("users")),
            "totalPosts": len(self._store.find("posts")),
            "pendingPosts": len(self._store.find("posts", status=PostStatus.PENDING.value)),
            "publishedPosts": len(self._store.find("posts", status=PostStatus.PUBLISHED.value)),
            "totalComments": len(self._store.find("comments")),
        }

    def author_stats(self, identity: str) -> Dict[str, int]:
        """Dashboard totals over everything the identity authored."""
        mine = [Post.from_record(r) for r in self._store.find("posts", author_id=identity)]
        by_status = {status: 0 for status in PostStatus}
        for post in mine:
            by_status[PostStatus(post.status)] += 1
        return {
            "totalPosts": len(mine),
            "publishedPosts": by_status[PostStatus.PUBLISHED],
            "draftPosts": by_status[PostStatus.DRAFT],
            "pendingPosts": by_status[PostStatus.PENDING],
            "rejectedPosts": by_status[PostStatus.REJECTED],
            "totalViews": sum(post.views for post in mine),
            "totalLikes": sum(post.like_count for post in mine),
            "totalComments": sum(post.comment_count for post in mine),
        }

    def analytics(self, days: int = 30) -> Dict[str, Any]:
        """
        Post and signup activity over the last `days` days.

        Trends are per UTC day, oldest first; days without activity are omitted.
        """
        if days < 1:
            raise ValidationError("days must be >= 1")
        since = self._clock() - timedelta(days=days)
        new_posts = [r for r in self._store.find("posts") if _created_at(r) >= since]
        new_users = [r for r in self._store.find("users") if _created_at(r) >= since]
        return {
            "postTrends": _daily_counts(new_posts),
            "userTrends": _daily_counts(new_users),
            "summary": {
                "totalPosts": len(new_posts),
                "totalUsers": len(new_users),
                "publishedPosts": sum(1 for r in new_posts if r.get("status") == PostStatus.PUBLISHED.value),
                "premiumUsers": sum(1 for r in new_users if Role.parse(r.get("role")) is Role.PREMIUM),
            },
        }


def _daily_counts(records: List[LedgerRecord]) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for record in records:
        day = _created_at(record).date().isoformat()
        counts[day] = counts.get(day, 0) + 1
    return [{"date": day, "count": counts[day]} for day in sorted(counts)]
