"""
content/models.py -- Domain dataclasses for community posts.

Pure data containers. PostStore (content/store.py) does the work.

Post is the stored row. PostView is a post as one particular viewer sees it:
the same row plus the like count and whether that viewer has liked it.
Anonymous viewers always see liked=False.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Post:
    """A post written by a community member.

    id is None before the record is written to the database.
    """

    author_id: int
    title: str
    body: str
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class PostView:
    post: Post
    like_count: int = 0
    liked: bool = False
