# inkpost/routers/comments.py
from fastapi import APIRouter, Depends, status
from sqlmodel import Session
from typing import List

from inkpost.core.deps import get_comment_crud, get_db, require_user
from inkpost.crud.comments import CommentCRUD
from inkpost.schemas.auth import AuthUser
from inkpost.schemas.blog import Comment, CommentCreate, CommentModeration

router = APIRouter(
    tags=["comments"],
    responses={404: {"description": "Not found"}},
)


@router.get("/posts/{post_id}/comments", response_model=List[Comment])
def list_comments(
    post_id: int,
    db: Session = Depends(get_db),
    crud: CommentCRUD = Depends(get_comment_crud),
):
    return crud.fetch_comments(db, post_id)


@router.post("/posts/{post_id}/comments", response_model=Comment, status_code=status.HTTP_201_CREATED)
def create_comment(
    post_id: int,
    comment_data: CommentCreate,
    db: Session = Depends(get_db),
    crud: CommentCRUD = Depends(get_comment_crud),
    current_user: AuthUser = Depends(require_user),
):
    """
    Comment on a post.

    The comment is visible at once unless moderation is enabled, in which
    case it stays pending until the post author approves it.
    """
    return crud.create_comment(db, post_id, comment_data.content, current_user.id)


@router.get("/posts/{post_id}/comments/pending", response_model=List[Comment])
def list_pending_comments(
    post_id: int,
    db: Session = Depends(get_db),
    crud: CommentCRUD = Depends(get_comment_crud),
    current_user: AuthUser = Depends(require_user),
):
    return crud.fetch_pending_comments(db, post_id, current_user.id)


@router.post("/comments/{comment_id}/moderation", response_model=Comment)
def moderate_comment(
    comment_id: int,
    moderation: CommentModeration,
    db: Session = Depends(get_db),
    crud: CommentCRUD = Depends(get_comment_crud),
    current_user: AuthUser = Depends(require_user),
):
    """**Permissions**: author of the commented post"""
    return crud.moderate_comment(db, comment_id, moderation.decision, current_user.id)
