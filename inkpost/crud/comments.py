# inkpost/crud/comments.py
from sqlmodel import Session, select
from typing import List
import logging

from inkpost.core.exceptions import InvalidStateTransition, PermissionDeniedError, RecordNotFoundError
from inkpost.crud.profiles import profile_crud
from inkpost.models.blog import Comment, CommentStatus, Post
from inkpost.models.user import utcnow
from inkpost.schemas.blog import Author, Comment as CommentSchema, CommentDecision

logger = logging.getLogger(__name__)

# pending -> approved | rejected; nothing leaves a final state
_TRANSITIONS = {
    CommentStatus.pending: {CommentStatus.approved, CommentStatus.rejected},
    CommentStatus.approved: set(),
    CommentStatus.rejected: set(),
}


class CommentCRUD:
    def __init__(self, require_approval: bool = False):
        self.require_approval = require_approval

    def _to_schema(self, db: Session, comments: List[Comment]) -> List[CommentSchema]:
        authors = profile_crud.get_profiles(db, (c.author_id for c in comments))
        return [
            CommentSchema(
                **comment.model_dump(),
                author=Author.model_validate(authors[comment.author_id]) if comment.author_id in authors else None,
            )
            for comment in comments
        ]

    def fetch_comments(self, db: Session, post_id: int) -> List[CommentSchema]:
        """Approved comments of a post, oldest first."""
        comments = db.exec(
            select(Comment)
            .where(Comment.post_id == post_id, Comment.status == CommentStatus.approved)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        ).all()
        return self._to_schema(db, list(comments))

    def create_comment(self, db: Session, post_id: int, content: str, author_id: int) -> CommentSchema:
        """
        Add a comment to a post.

        Comments are approved straight away unless moderation is switched on,
        in which case they wait as pending for the post author.
        """
        if not db.get(Post, post_id):
            raise RecordNotFoundError(f"Post {post_id} not found")

        comment = Comment(
            post_id=post_id,
            author_id=author_id,
            content=content,
            status=CommentStatus.pending if self.require_approval else CommentStatus.approved,
        )
        db.add(comment)
        db.commit()
        db.refresh(comment)
        return self._to_schema(db, [comment])[0]

    def fetch_pending_comments(self, db: Session, post_id: int, moderator_id: int) -> List[CommentSchema]:
        post = db.get(Post, post_id)
        if not post:
            raise RecordNotFoundError(f"Post {post_id} not found")
        if post.author_id != moderator_id:
            raise PermissionDeniedError("Only the post author can moderate its comments")

        comments = db.exec(
            select(Comment)
            .where(Comment.post_id == post_id, Comment.status == CommentStatus.pending)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
        ).all()
        return self._to_schema(db, list(comments))

    def moderate_comment(
        self,
        db: Session,
        comment_id: int,
        decision: CommentDecision,
        moderator_id: int
    ) -> CommentSchema:
        """Approve or reject a pending comment; only the author of the post may do so."""
        comment = db.get(Comment, comment_id)
        if not comment:
            raise RecordNotFoundError(f"Comment {comment_id} not found")

        post = db.get(Post, comment.post_id)
        if not post or post.author_id != moderator_id:
            raise PermissionDeniedError("Only the post author can moderate its comments")

        target = CommentStatus.approved if CommentDecision(decision) == CommentDecision.approve else CommentStatus.rejected
        if target not in _TRANSITIONS[CommentStatus(comment.status)]:
            raise InvalidStateTransition(f"Comment {comment_id} is already {CommentStatus(comment.status).value}")

        comment.status = target
        comment.updated_at = utcnow()
        db.add(comment)
        db.commit()
        db.refresh(comment)
        logger.info(f"Comment {comment_id} {target.value} by user {moderator_id}")
        return self._to_schema(db, [comment])[0]


comment_crud = CommentCRUD()
