# inkpost/crud/posts.py
from sqlmodel import Session, select, and_, or_
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Dict, Union, Iterable
from datetime import date, datetime, time
import logging

from inkpost.core.exceptions import (
    AuthenticationError, PostValidationError, RecordNotFoundError, SlugConflictError
)
from inkpost.core.formatting import (
    convert_to_timezone, ensure_slug, estimate_reading_minutes, generate_unique_file_name,
    slugify_with_pinyin
)
from inkpost.core.storage import (
    POSTS_BUCKET, FileUpload, StorageService, UploadBatch, validate_image_upload
)
from inkpost.crud.profiles import profile_crud
from inkpost.crud.tags import tag_crud
from inkpost.models.blog import Comment, Post, PostStatus, Tag, TagPost
from inkpost.models.user import utcnow
from inkpost.schemas.auth import AuthUser
from inkpost.schemas.blog import (
    Author, Post as PostSchema, PostCreate, PostUpdate, SortOrder, Tag as TagSchema,
    TagMissPolicy
)

logger = logging.getLogger(__name__)

DateBound = Union[date, datetime]


def _lower_bound(value: DateBound) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _upper_bound(value: DateBound) -> datetime:
    # A bare date includes the whole day
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


def _valid_tag(tag: Optional[Tag]) -> bool:
    return tag is not None and tag.id is not None and bool(tag.name)


def _require_user(current_user: Optional[AuthUser]) -> AuthUser:
    if current_user is None:
        raise AuthenticationError("User is not authenticated")
    return current_user


class PostCRUD:
    def __init__(
        self,
        cover_max_mb: float = 5,
        attachment_max_mb: float = 8,
        tag_miss_policy: TagMissPolicy = TagMissPolicy.ignore,
        default_timezone: str = "Asia/Shanghai",
    ):
        self.cover_max_mb = cover_max_mb
        self.default_timezone = default_timezone
        self.attachment_max_mb = attachment_max_mb
        self.tag_miss_policy = tag_miss_policy

    # ============ Read helpers ============

    def _tags_by_post(self, db: Session, post_ids: List[int]) -> Dict[int, List[TagSchema]]:
        """Tags of each post from the join table, in association order."""
        result: Dict[int, List[TagSchema]] = {post_id: [] for post_id in post_ids}
        if not post_ids:
            return result

        rows = db.exec(
            select(TagPost, Tag)
            .join(Tag, TagPost.tag_id == Tag.id, isouter=True)
            .where(TagPost.post_id.in_(post_ids))
            .order_by(TagPost.id)
        ).all()

        for link, tag in rows:
            if not _valid_tag(tag):
                continue
            result[link.post_id].append(TagSchema.model_validate(tag))
        return result

    def _to_schema(
        self,
        posts: Iterable[Post],
        db: Session,
        tags_info: Optional[Dict[int, List[TagSchema]]] = None,
    ) -> List[PostSchema]:
        posts = list(posts)
        authors = profile_crud.get_profiles(db, (p.author_id for p in posts))
        if tags_info is None:
            tags_info = self._tags_by_post(db, [p.id for p in posts])

        return [
            PostSchema(
                **post.model_dump(),
                author=Author.model_validate(authors[post.author_id]) if post.author_id in authors else None,
                tags_info=tags_info.get(post.id, []),
                published_display=convert_to_timezone(post.published_at, post.published_tz or self.default_timezone),
            )
            for post in posts
        ]

    def slug_exists(self, db: Session, slug: str, exclude_post_id: Optional[int] = None) -> bool:
        query = select(Post.id).where(Post.slug == slug)
        if exclude_post_id is not None:
            query = query.where(Post.id != exclude_post_id)
        return db.exec(query).first() is not None

    # ============ Queries ============

    def list_posts(
        self,
        db: Session,
        tag_slug: Optional[str] = None,
        keyword: Optional[str] = None,
        start_date: Optional[DateBound] = None,
        end_date: Optional[DateBound] = None,
        sort_order: SortOrder = SortOrder.published_at_desc,
        status: Optional[str] = PostStatus.published.value,
        tag_miss_policy: Optional[TagMissPolicy] = None,
        author_id: Optional[int] = None,
    ) -> List[PostSchema]:
        """
        List posts matching every filter that is given.

        - status: equality filter whenever provided
        - keyword: case-insensitive match on title, content or excerpt;
          blank keywords are ignored
        - tag_slug: posts associated with that tag. When no tag has the slug,
          `tag_miss_policy` (default: the instance policy) decides between
          dropping the filter and returning nothing
        - start_date / end_date: inclusive bounds on published_at
        - author_id: posts of one author only

        Each post carries its author and `tags_info`, the associated tags in
        association order with incomplete entries left out.
        """
        conditions = []

        if status:
            conditions.append(Post.status == status)

        if author_id is not None:
            conditions.append(Post.author_id == author_id)

        if keyword and keyword.strip():
            search_pattern = f"%{keyword.strip()}%"
            conditions.append(
                or_(
                    Post.title.ilike(search_pattern),
                    Post.content.ilike(search_pattern),
                    Post.excerpt.ilike(search_pattern)
                )
            )

        if tag_slug:
            tag_id = tag_crud.get_tag_id_by_slug(db, tag_slug)
            if tag_id is not None:
                conditions.append(
                    Post.id.in_(select(TagPost.post_id).where(TagPost.tag_id == tag_id))
                )
            else:
                policy = TagMissPolicy(tag_miss_policy or self.tag_miss_policy)
                logger.debug(f"No tag with slug '{tag_slug}', policy={policy.value}")
                if policy == TagMissPolicy.empty:
                    return []

        if start_date:
            conditions.append(Post.published_at >= _lower_bound(start_date))
        if end_date:
            conditions.append(Post.published_at <= _upper_bound(end_date))

        query = select(Post)
        if conditions:
            query = query.where(and_(*conditions))

        sort_order = SortOrder(sort_order)
        if sort_order == SortOrder.published_at_asc:
            query = query.order_by(Post.published_at.asc(), Post.id.asc())
        elif sort_order == SortOrder.created_at_desc:
            query = query.order_by(Post.created_at.desc(), Post.id.desc())
        else:
            query = query.order_by(Post.published_at.desc(), Post.id.desc())

        return self._to_schema(db.exec(query).all(), db)

    def get_post_by_slug(self, db: Session, slug: str) -> PostSchema:
        """
        Single post by slug.

        Raises sqlalchemy's NoResultFound when no post has the slug. Tags are
        resolved from the post's own tag id list.
        """
        post = db.exec(select(Post).where(Post.slug == slug)).one()
        tags = [TagSchema.model_validate(t) for t in tag_crud.get_tags_by_ids(db, post.tags or []) if _valid_tag(t)]
        return self._to_schema([post], db, tags_info={post.id: tags})[0]

    def fetch_my_posts(self, db: Session, user_id: int) -> List[PostSchema]:
        """Every post of one author, any status, newest first."""
        posts = db.exec(
            select(Post).where(Post.author_id == user_id).order_by(Post.created_at.desc(), Post.id.desc())
        ).all()
        return self._to_schema(posts, db)

    # ============ Mutations ============

    def _validate_files(self, cover: Optional[FileUpload], attachments: Optional[List[FileUpload]]) -> None:
        if cover is not None:
            validate_image_upload(cover, self.cover_max_mb, "Cover image")
        for file in attachments or []:
            validate_image_upload(file, self.attachment_max_mb, "Attachment")

    async def _upload_files(
        self,
        batch: UploadBatch,
        user_id: int,
        cover: Optional[FileUpload],
        attachments: Optional[List[FileUpload]],
    ) -> tuple[Optional[str], List[str]]:
        cover_url = None
        if cover is not None:
            cover_url = await batch.upload(f"covers/{user_id}/{generate_unique_file_name(cover.filename)}", cover)

        # One at a time, in the order given
        attachment_urls = []
        for file in attachments or []:
            url = await batch.upload(f"attachments/{user_id}/{generate_unique_file_name(file.filename)}", file)
            attachment_urls.append(url)
        return cover_url, attachment_urls

    def _replace_tag_links(self, db: Session, post: Post, tag_ids: List[int]) -> None:
        """Delete every association of the post and insert `tag_ids` (no diffing)."""
        tag_ids = list(dict.fromkeys(tag_ids))
        for link in db.exec(select(TagPost).where(TagPost.post_id == post.id)).all():
            db.delete(link)
        for tag_id in tag_ids:
            db.add(TagPost(post_id=post.id, tag_id=tag_id))
        post.tags = tag_ids

    def _save(self, db: Session, post: Post, action: str, tag_ids: Optional[List[int]] = None) -> None:
        """Write the post and, when `tag_ids` is given, its associations in one transaction."""
        slug, post_id = post.slug, post.id
        try:
            db.add(post)
            db.flush()
            if tag_ids is not None:
                self._replace_tag_links(db, post, tag_ids)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error(f"Failed to {action} post '{slug}': {e}")
            if self.slug_exists(db, slug, exclude_post_id=post_id):
                raise SlugConflictError(slug) from e
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to {action} post '{slug}': {e}")
            raise

    async def create_post(
        self,
        db: Session,
        storage: StorageService,
        payload: PostCreate,
        current_user: Optional[AuthUser],
        cover: Optional[FileUpload] = None,
        attachments: Optional[List[FileUpload]] = None,
    ) -> PostSchema:
        """
        Create a post owned by `current_user`.

        The slug is the normalised `payload.slug` or is derived from the
        title. Files are all validated before the first upload; if anything
        fails after uploading started, the uploaded blobs are removed. The
        post row and its tag associations are committed together.
        """
        user = _require_user(current_user)

        reading_minutes = estimate_reading_minutes(payload.content)

        slug = ensure_slug(payload.slug) or slugify_with_pinyin(payload.title)
        if not slug:
            raise PostValidationError("Unable to derive a slug from the title")
        if self.slug_exists(db, slug):
            raise SlugConflictError(slug)

        self._validate_files(cover, attachments)

        async with UploadBatch(storage, POSTS_BUCKET) as batch:
            cover_url, attachment_urls = await self._upload_files(batch, user.id, cover, attachments)

            post = Post(
                **payload.model_dump(exclude={"slug", "tags", "published_tz"}),
                published_tz=payload.published_tz or self.default_timezone,
                slug=slug,
                cover_url=cover_url,
                attachments=attachment_urls,
                reading_minutes=reading_minutes,
                author_id=user.id,
            )
            self._save(db, post, "create", tag_ids=payload.tags)

        created = db.get(Post, post.id)
        if not created:
            raise RecordNotFoundError("Post was not found after creation")

        logger.info(f"Created post {created.id} '{created.slug}' by user {user.id}")
        return self._to_schema([created], db)[0]

    async def update_post(
        self,
        db: Session,
        storage: StorageService,
        post_id: int,
        payload: PostUpdate,
        current_user: Optional[AuthUser],
        cover: Optional[FileUpload] = None,
        attachments: Optional[List[FileUpload]] = None,
    ) -> PostSchema:
        """
        Update one of the current user's posts.

        Only fields set on `payload` change. Without a new cover the existing
        `cover_url` is kept (or the one given in the payload); new attachments
        are appended to the existing list (or to the list given in the
        payload). When `tags` is set the associations are replaced, an empty
        list clearing them; when it is not set they are left alone.
        """
        user = _require_user(current_user)

        post = db.exec(select(Post).where(Post.id == post_id, Post.author_id == user.id)).first()
        if not post:
            raise RecordNotFoundError(f"Post {post_id} not found")

        update_data = payload.model_dump(exclude_unset=True)
        tag_ids = update_data.pop("tags", None)
        cover_url = update_data.pop("cover_url", post.cover_url)
        if "attachments" in update_data:
            attachment_urls = list(update_data.pop("attachments") or [])
        else:
            attachment_urls = list(post.attachments or [])

        if "slug" in update_data:
            slug = ensure_slug(update_data["slug"]) or slugify_with_pinyin(update_data.get("title") or post.title)
            if not slug:
                raise PostValidationError("Unable to derive a slug from the title")
            if slug != post.slug and self.slug_exists(db, slug, exclude_post_id=post.id):
                raise SlugConflictError(slug)
            update_data["slug"] = slug

        if "content" in update_data:
            update_data["reading_minutes"] = estimate_reading_minutes(update_data["content"])

        self._validate_files(cover, attachments)

        async with UploadBatch(storage, POSTS_BUCKET) as batch:
            new_cover_url, new_attachment_urls = await self._upload_files(batch, user.id, cover, attachments)

            for field, value in update_data.items():
                setattr(post, field, value)
            post.cover_url = new_cover_url or cover_url
            post.attachments = attachment_urls + new_attachment_urls
            post.updated_at = utcnow()

            self._save(db, post, "update", tag_ids=tag_ids)

        updated = db.get(Post, post_id)
        if not updated:
            raise RecordNotFoundError(f"Post {post_id} was not found after update")
        db.refresh(updated)
        return self._to_schema([updated], db)[0]

    def delete_post(self, db: Session, post_id: int, current_user: Optional[AuthUser]) -> bool:
        """
        Delete a post owned by the current user.

        Returns False when nothing was deleted; a post that belongs to
        someone else is indistinguishable from a missing one.
        """
        user = _require_user(current_user)

        post = db.exec(select(Post).where(Post.id == post_id, Post.author_id == user.id)).first()
        if not post:
            logger.info(f"Delete of post {post_id} by user {user.id} affected no rows")
            return False

        for link in db.exec(select(TagPost).where(TagPost.post_id == post_id)).all():
            db.delete(link)
        for comment in db.exec(select(Comment).where(Comment.post_id == post_id)).all():
            db.delete(comment)
        db.flush()
        db.delete(post)
        db.commit()
        logger.info(f"Deleted post {post_id}")
        return True

    async def delete_attachment(
        self,
        db: Session,
        storage: StorageService,
        post_id: int,
        attachment_url: str,
        current_user: Optional[AuthUser],
    ) -> PostSchema:
        """
        Remove one attachment URL (the first exact match) from a post.

        The stored blob is deleted afterwards on a best-effort basis; a
        failure there is logged and the metadata change stands. Only blobs
        in the author's own attachment folder are ever deleted, and not
        while the post still lists the same URL.
        """
        user = _require_user(current_user)

        post = db.exec(select(Post).where(Post.id == post_id, Post.author_id == user.id)).first()
        if not post:
            raise RecordNotFoundError(f"Post {post_id} not found")

        attachments = list(post.attachments or [])
        if attachment_url not in attachments:
            raise RecordNotFoundError(f"Attachment not found on post {post_id}")
        attachments.remove(attachment_url)

        post.attachments = attachments
        post.updated_at = utcnow()
        db.add(post)
        db.commit()
        db.refresh(post)

        path = storage.path_from_public_url(POSTS_BUCKET, attachment_url)
        if path is None:
            logger.warning(f"Attachment URL is not in the {POSTS_BUCKET} bucket: {attachment_url}")
        elif not path.startswith(f"attachments/{user.id}/") or ".." in path.split("/"):
            logger.warning(f"Attachment {path} is not owned by user {user.id}; keeping the file")
        elif attachment_url in attachments:
            logger.info(f"Attachment {path} is still listed on post {post_id}; keeping the file")
        else:
            try:
                if not await storage.remove(POSTS_BUCKET, [path]):
                    logger.warning(f"Failed to delete file from storage: {path}")
            except Exception as e:
                logger.error(f"Failed to delete file from storage: {path}: {e}")

        return self._to_schema([post], db)[0]


# Create singleton instance
post_crud = PostCRUD()
