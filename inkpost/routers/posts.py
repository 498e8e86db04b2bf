# inkpost/routers/posts.py
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlmodel import Session
from typing import List, Optional
from datetime import date, datetime
import logging

from inkpost.core.deps import (
    get_current_user, get_db, get_post_crud, get_storage, read_upload, read_uploads, require_user
)
from inkpost.core.exceptions import RecordNotFoundError
from inkpost.core.storage import StorageService
from inkpost.crud.posts import PostCRUD
from inkpost.crud.tags import tag_crud
from inkpost.models.blog import PostStatus
from inkpost.schemas.auth import AuthUser
from inkpost.schemas.blog import (
    HomePage, Post, PostCreate, PostUpdate, SortOrder, Tag, TagMissPolicy
)

router = APIRouter(
    tags=["posts"],
    responses={404: {"description": "Not found"}},
)
logger = logging.getLogger(__name__)

HOME_POST_COUNT = 10


def _visible_to(post: Post, current_user: Optional[AuthUser]) -> bool:
    if post.status == PostStatus.published.value:
        return True
    return current_user is not None and post.author_id == current_user.id


# ========================================
# READ ENDPOINTS
# ========================================

@router.get("/", response_model=HomePage)
def home(
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
):
    """Latest published posts and every tag."""
    posts = crud.list_posts(db)
    return HomePage(
        posts=posts[:HOME_POST_COUNT],
        tags=[Tag.model_validate(t) for t in tag_crud.fetch_tags(db)],
    )


@router.get("/posts", response_model=List[Post])
def list_posts(
    tag: Optional[str] = None,
    keyword: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sort: SortOrder = SortOrder.published_at_desc,
    post_status: PostStatus = Query(PostStatus.published, alias="status"),
    tag_miss_policy: Optional[TagMissPolicy] = None,
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: Optional[AuthUser] = Depends(get_current_user),
):
    """
    List posts.

    **Query Parameters**:
    - tag: Filter by tag slug
    - keyword: Search in title, content and excerpt
    - start_date / end_date: Inclusive bounds on the publication date
    - sort: published_at_desc (default), published_at_asc or created_at_desc
    - status: published (default) or draft; drafts are only listed for their author
    - tag_miss_policy: ignore (default) or empty, for a tag slug that does not exist
    """
    author_id = None
    if post_status != PostStatus.published:
        if current_user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Sign in to list drafts"
            )
        author_id = current_user.id

    return crud.list_posts(
        db,
        tag_slug=tag,
        keyword=keyword,
        start_date=start_date,
        end_date=end_date,
        sort_order=sort,
        status=post_status.value,
        tag_miss_policy=tag_miss_policy,
        author_id=author_id,
    )


@router.get("/tags", response_model=List[Tag])
def list_tags(db: Session = Depends(get_db)):
    return [Tag.model_validate(t) for t in tag_crud.fetch_tags(db)]


@router.get("/post/{slug}", response_model=Post)
def get_post(
    slug: str,
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: Optional[AuthUser] = Depends(get_current_user),
):
    post = crud.get_post_by_slug(db, slug)
    if not _visible_to(post, current_user):
        raise RecordNotFoundError(f"Post '{slug}' not found")
    return post


@router.get("/post/{slug}/edit", response_model=Post)
def get_post_for_edit(
    slug: str,
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    """The post as loaded by the editor; only its author may open it."""
    post = crud.get_post_by_slug(db, slug)
    if post.author_id != current_user.id:
        raise RecordNotFoundError(f"Post '{slug}' not found")
    return post


@router.get("/my-posts", response_model=List[Post])
def my_posts(
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    return crud.fetch_my_posts(db, current_user.id)


# ========================================
# WRITE ENDPOINTS
# ========================================

@router.post("/posts", response_model=Post, status_code=status.HTTP_201_CREATED)
async def create_post(
    title: str = Form(...),
    content: str = Form(""),
    excerpt: Optional[str] = Form(None),
    post_status: PostStatus = Form(PostStatus.draft, alias="status"),
    published_at: Optional[datetime] = Form(None),
    published_tz: Optional[str] = Form(None),
    show_attachments: bool = Form(True),
    slug: Optional[str] = Form(None),
    tags: List[int] = Form([]),
    cover: Optional[UploadFile] = File(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    """
    Create a post (multipart form).

    The slug is derived from the title when not given. Cover and attachments
    must be images (5MB / 8MB limits by default).
    """
    payload = PostCreate(
        title=title,
        content=content,
        excerpt=excerpt,
        status=post_status.value,
        published_at=published_at,
        published_tz=published_tz,
        show_attachments=show_attachments,
        slug=slug,
        tags=tags,
    )
    return await crud.create_post(
        db,
        storage,
        payload,
        current_user,
        cover=await read_upload(cover),
        attachments=await read_uploads(attachments),
    )


@router.put("/posts/{post_id}", response_model=Post)
async def update_post(
    post_id: int,
    payload: PostUpdate,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    """Apply the fields present in the body; `tags: []` clears the tags."""
    return await crud.update_post(db, storage, post_id, payload, current_user)


@router.post("/posts/{post_id}/files", response_model=Post)
async def upload_post_files(
    post_id: int,
    cover: Optional[UploadFile] = File(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    """Replace the cover and/or append attachments."""
    return await crud.update_post(
        db,
        storage,
        post_id,
        PostUpdate(),
        current_user,
        cover=await read_upload(cover),
        attachments=await read_uploads(attachments),
    )


@router.delete("/posts/{post_id}/attachments", response_model=Post)
async def delete_attachment(
    post_id: int,
    url: str = Query(..., description="Public URL of the attachment"),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    return await crud.delete_attachment(db, storage, post_id, url, current_user)


@router.delete("/posts/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_post(
    post_id: int,
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    if not crud.delete_post(db, post_id, current_user):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found"
        )
