# inkpost/routers/storage.py
"""
Public read access to the local object store.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from inkpost.core.deps import get_storage
from inkpost.core.storage import AVATARS_BUCKET, POSTS_BUCKET, StorageService

router = APIRouter(prefix="/storage", tags=["storage"])

PUBLIC_BUCKETS = {POSTS_BUCKET, AVATARS_BUCKET}


@router.get("/{bucket}/{path:path}")
def get_object(
    bucket: str,
    path: str,
    storage: StorageService = Depends(get_storage),
):
    if bucket not in PUBLIC_BUCKETS or storage.storage_backend != "local":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    try:
        file_path = storage.local_path(bucket, path)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    if not file_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return FileResponse(file_path)
