# inkpost/core/deps.py
from fastapi import Depends, Request, UploadFile
from sqlmodel import Session
from typing import Generator, List, Optional

from inkpost.core.exceptions import AuthenticationError
from inkpost.core.session_store import SessionStore
from inkpost.core.storage import FileUpload, StorageService
from inkpost.crud.comments import CommentCRUD
from inkpost.crud.posts import PostCRUD
from inkpost.schemas.auth import AuthUser
from inkpost.services.gateway import Gateway


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_db(gateway: Gateway = Depends(get_gateway)) -> Generator[Session, None, None]:
    with gateway.session() as session:
        yield session


def get_storage(gateway: Gateway = Depends(get_gateway)) -> StorageService:
    return gateway.storage


def get_post_crud(request: Request) -> PostCRUD:
    return request.app.state.post_crud


def get_comment_crud(request: Request) -> CommentCRUD:
    return request.app.state.comment_crud


async def get_auth_store(request: Request) -> SessionStore:
    """The request's SessionStore, set up by AuthGuardMiddleware."""
    store = getattr(request.state, "auth", None)
    if store is None:
        raise RuntimeError("AuthGuardMiddleware is not installed")
    if store.loading:
        await store.initialize()
    return store


def get_current_user(store: SessionStore = Depends(get_auth_store)) -> Optional[AuthUser]:
    return store.user


def require_user(current_user: Optional[AuthUser] = Depends(get_current_user)) -> AuthUser:
    if current_user is None:
        raise AuthenticationError()
    return current_user


async def read_upload(file: Optional[UploadFile]) -> Optional[FileUpload]:
    """Read a multipart file into memory; None for a missing or empty field."""
    if file is None or not file.filename:
        return None
    content = await file.read()
    return FileUpload(
        filename=file.filename,
        content_type=file.content_type or "application/octet-stream",
        content=content,
    )


async def read_uploads(files: Optional[List[UploadFile]]) -> List[FileUpload]:
    uploads = []
    for file in files or []:
        upload = await read_upload(file)
        if upload is not None:
            uploads.append(upload)
    return uploads
