# inkpost/routers/profile.py
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlmodel import Session
from typing import Dict

from inkpost.core.deps import get_auth_store, get_db, get_post_crud, read_upload, require_user
from inkpost.core.exceptions import RecordNotFoundError
from inkpost.core.session_store import SessionStore
from inkpost.crud.posts import PostCRUD
from inkpost.crud.profiles import profile_crud
from inkpost.models.blog import PostStatus
from inkpost.schemas.auth import AuthUser
from inkpost.schemas.blog import DashboardStats, Profile, ProfileUpdate

router = APIRouter(tags=["profile"])

RECENT_POST_COUNT = 5


@router.get("/profile", response_model=Profile)
def get_profile(
    db: Session = Depends(get_db),
    current_user: AuthUser = Depends(require_user),
):
    profile = profile_crud.get_profile(db, current_user.id)
    if not profile:
        raise RecordNotFoundError(f"Profile {current_user.id} not found")
    return profile


@router.put("/profile", response_model=Profile)
async def update_profile(
    profile_data: ProfileUpdate,
    store: SessionStore = Depends(get_auth_store),
    current_user: AuthUser = Depends(require_user),
):
    profile = await store.update_profile(profile_data)
    await store.refresh_user()
    return profile


@router.post("/profile/avatar", response_model=Dict[str, str])
async def upload_avatar(
    file: UploadFile = File(...),
    store: SessionStore = Depends(get_auth_store),
    current_user: AuthUser = Depends(require_user),
):
    """Upload a new avatar image (5MB limit by default)."""
    upload = await read_upload(file)
    if upload is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file uploaded"
        )
    avatar_url = await store.upload_avatar(upload)
    return {"avatar_url": avatar_url}


@router.get("/dashboard", response_model=DashboardStats)
def dashboard(
    db: Session = Depends(get_db),
    crud: PostCRUD = Depends(get_post_crud),
    current_user: AuthUser = Depends(require_user),
):
    """Counts over the current user's posts plus the most recent ones."""
    posts = crud.fetch_my_posts(db, current_user.id)
    published = [p for p in posts if p.status == PostStatus.published.value]
    return DashboardStats(
        total_posts=len(posts),
        published_posts=len(published),
        draft_posts=len(posts) - len(published),
        total_reading_minutes=sum(p.reading_minutes for p in posts),
        recent_posts=posts[:RECENT_POST_COUNT],
    )
