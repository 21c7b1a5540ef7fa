"""
api/routes/posts.py -- Community posts and likes.

Routes:
  GET    /posts             -- newest first, keyset paginated (soft auth)
  GET    /posts/{id}        -- one post (soft auth)
  POST   /posts             -- create a post (requires auth)
  POST   /posts/{id}/like   -- like a post (requires auth)
  DELETE /posts/{id}/like   -- remove a like (requires auth)

The two GET routes are SOFT in auth/policy.py: anonymous callers get the
same posts with liked=false, authenticated callers see their own likes.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import LikeResponse, PostCreate, PostListResponse, PostResponse
from auth.dependencies import get_identity, try_get_identity
from auth.models import Identity
from content.models import Post, PostView
from content.store import PostStore

router = APIRouter()


def _post_response(view: PostView) -> PostResponse:
    return PostResponse(
        id=view.post.id,
        author_id=view.post.author_id,
        title=view.post.title,
        body=view.post.body,
        created_at=view.post.created_at,
        like_count=view.like_count,
        liked=view.liked,
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Post not found."})


@router.get("/posts", response_model=PostListResponse)
def list_posts(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[int] = Query(None, ge=1),
    identity: Optional[Identity] = Depends(try_get_identity),
) -> PostListResponse:
    store: PostStore = request.app.state.post_store
    viewer_id = identity.user_id if identity else None
    views = store.list_posts(viewer_id=viewer_id, limit=limit, before_id=cursor)
    next_cursor = views[-1].post.id if len(views) == limit else None
    return PostListResponse(items=[_post_response(v) for v in views], next_cursor=next_cursor)


@router.get("/posts/{post_id}", response_model=PostResponse)
def get_post(
    request: Request, post_id: int, identity: Optional[Identity] = Depends(try_get_identity)
) -> PostResponse:
    store: PostStore = request.app.state.post_store
    view = store.get_post(post_id, viewer_id=identity.user_id if identity else None)
    if view is None:
        raise _not_found()
    return _post_response(view)


@router.post("/posts", response_model=PostResponse, status_code=201)
def create_post(request: Request, body: PostCreate, identity: Identity = Depends(get_identity)) -> PostResponse:
    store: PostStore = request.app.state.post_store
    post_id = store.create_post(Post(author_id=identity.user_id, title=body.title, body=body.body))
    return _post_response(store.get_post(post_id, viewer_id=identity.user_id))


@router.post("/posts/{post_id}/like", response_model=LikeResponse)
def like_post(request: Request, post_id: int, identity: Identity = Depends(get_identity)) -> LikeResponse:
    """Idempotent: liking twice leaves one like."""
    store: PostStore = request.app.state.post_store
    if store.get_post(post_id) is None:
        raise _not_found()
    store.like(post_id, identity.user_id)
    return LikeResponse(post_id=post_id, like_count=store.like_count(post_id), liked=True)


@router.delete("/posts/{post_id}/like", response_model=LikeResponse)
def unlike_post(request: Request, post_id: int, identity: Identity = Depends(get_identity)) -> LikeResponse:
    store: PostStore = request.app.state.post_store
    if store.get_post(post_id) is None:
        raise _not_found()
    store.unlike(post_id, identity.user_id)
    return LikeResponse(post_id=post_id, like_count=store.like_count(post_id), liked=False)
