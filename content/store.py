"""
content/store.py -- SQLAlchemy-backed persistence for posts and likes.

Pattern: Repository + Data Mapper. PostStore is the repository; _row_to_post
is the mapper. Route handlers never touch SQL directly.

Every read takes an optional viewer_id. The like count is the same for
everyone; the liked flag is computed for that viewer only and is False when
viewer_id is None (anonymous, soft-auth request).

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = PostStore("sqlite:///community.db")
    post_id = store.create_post(Post(author_id=1, title="Hi", body="..."))
    store.like(post_id, user_id=2)
    views = store.list_posts(viewer_id=2, limit=20)
    store.close()
"""

from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, and_, func, literal, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.store import make_engine, now_iso
from content.models import Post, PostView

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("author_id", Integer, nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("body", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_post_likes = Table(
    "post_likes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("post_id", Integer, nullable=False, index=True),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("post_id", "user_id", name="uq_post_like"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PostStore:
    def __init__(self, db_url: str) -> None:
        self.engine: Engine = make_engine(db_url)
        metadata.create_all(self.engine)

    def _view_query(self, viewer_id: Optional[int]):
        like_count = (
            select(func.count())
            .select_from(_post_likes)
            .where(_post_likes.c.post_id == _posts.c.id)
            .scalar_subquery()
            .label("like_count")
        )
        if viewer_id is None:
            liked = literal(0).label("liked")
        else:
            liked = (
                select(func.count())
                .select_from(_post_likes)
                .where(and_(_post_likes.c.post_id == _posts.c.id, _post_likes.c.user_id == viewer_id))
                .scalar_subquery()
                .label("liked")
            )
        return select(_posts, like_count, liked)

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> int:
        """Insert a new post and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _posts.insert().values(
                    author_id=post.author_id,
                    title=post.title,
                    body=post.body,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_post(self, post_id: int, viewer_id: Optional[int] = None) -> Optional[PostView]:
        """Fetch a single post as viewer_id sees it. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._view_query(viewer_id).where(_posts.c.id == post_id)).fetchone()
        return _row_to_view(row) if row is not None else None

    def list_posts(
        self, viewer_id: Optional[int] = None, limit: int = 20, before_id: Optional[int] = None
    ) -> list[PostView]:
        """Return posts newest first.

        before_id is a keyset cursor: pass the smallest id of the previous
        page to get the next one.
        """
        query = self._view_query(viewer_id)
        if before_id is not None:
            query = query.where(_posts.c.id < before_id)
        query = query.order_by(_posts.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_view(r) for r in rows]

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    def like(self, post_id: int, user_id: int) -> bool:
        """Record a like. Returns False if the user had already liked the post."""
        try:
            with self.engine.begin() as conn:
                conn.execute(_post_likes.insert().values(post_id=post_id, user_id=user_id, created_at=now_iso()))
        except IntegrityError:
            return False
        return True

    def unlike(self, post_id: int, user_id: int) -> bool:
        """Remove a like. Returns False if there was nothing to remove."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _post_likes.delete().where(and_(_post_likes.c.post_id == post_id, _post_likes.c.user_id == user_id))
            )
        return result.rowcount > 0

    def like_count(self, post_id: int) -> int:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(_post_likes).where(_post_likes.c.post_id == post_id)
            ).scalar()
        return count or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        author_id=row.author_id,
        title=row.title,
        body=row.body,
        created_at=row.created_at,
    )


def _row_to_view(row) -> PostView:
    return PostView(post=_row_to_post(row), like_count=row.like_count or 0, liked=bool(row.liked))
