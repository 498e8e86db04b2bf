from datetime import datetime

import pytest
from pydantic import ValidationError
from sqlmodel import Session, select

from inkpost.core.exceptions import (
    AuthenticationError, FileValidationError, RecordNotFoundError, SlugConflictError
)
from inkpost.core.storage import POSTS_BUCKET, FileUpload
from inkpost.crud.posts import PostCRUD
from inkpost.models.blog import Comment, Post, TagPost
from inkpost.schemas.blog import PostCreate, PostUpdate


@pytest.fixture(name="crud")
def crud_fixture():
    return PostCRUD(cover_max_mb=1, attachment_max_mb=1)


def stored_files(gateway):
    bucket = gateway.storage.upload_dir / POSTS_BUCKET
    if not bucket.exists():
        return []
    return sorted(p for p in bucket.rglob("*") if p.is_file())


def tag_links(session: Session, post_id: int):
    links = session.exec(select(TagPost).where(TagPost.post_id == post_id).order_by(TagPost.id)).all()
    return [link.tag_id for link in links]


class TestCreatePost:
    @pytest.mark.asyncio
    async def test_create_derives_slug_and_reading_time(self, session, gateway, crud, author, tags):
        payload = PostCreate(title="你好 World", content="字" * 800, tags=[tags["python"].id])

        post = await crud.create_post(session, gateway.storage, payload, author)

        assert post.slug == "ni-hao-world"
        assert post.reading_minutes == 2
        assert post.author_id == author.id
        assert post.tags == [tags["python"].id]
        assert [t.slug for t in post.tags_info] == ["python"]
        assert tag_links(session, post.id) == [tags["python"].id]

    @pytest.mark.asyncio
    async def test_publication_time_is_rendered_in_post_timezone(self, session, gateway, crud, author):
        payload = PostCreate(title="Timed", published_at=datetime(2024, 1, 5, 16, 30))

        post = await crud.create_post(session, gateway.storage, payload, author)

        assert post.published_tz == "Asia/Shanghai"
        assert post.published_display == "2024/01/06 00:30"

        updated = await crud.update_post(
            session, gateway.storage, post.id, PostUpdate(published_tz="UTC"), author
        )
        assert updated.published_display == "2024/01/05 16:30"

    def test_unknown_timezone_is_rejected(self):
        with pytest.raises(ValidationError):
            PostCreate(title="Nowhere", published_tz="Mars/Olympus_Mons")

    @pytest.mark.asyncio
    async def test_cyrillic_title_gets_a_transliterated_slug(self, session, gateway, crud, author):
        post = await crud.create_post(session, gateway.storage, PostCreate(title="Привет мир"), author)
        assert post.slug == "privet-mir"

    @pytest.mark.asyncio
    async def test_supplied_slug_is_normalised(self, session, gateway, crud, author):
        post = await crud.create_post(session, gateway.storage, PostCreate(title="T", slug="My Custom Slug!"), author)
        assert post.slug == "my-custom-slug"

    @pytest.mark.asyncio
    async def test_slug_collision_inserts_nothing(self, session, gateway, crud, author, make_image):
        await crud.create_post(session, gateway.storage, PostCreate(title="Hello World"), author)

        with pytest.raises(SlugConflictError):
            await crud.create_post(
                session, gateway.storage, PostCreate(title="Hello, World!"), author, cover=make_image()
            )

        assert len(session.exec(select(Post)).all()) == 1
        assert stored_files(gateway) == []

    @pytest.mark.asyncio
    async def test_requires_user(self, session, gateway, crud):
        with pytest.raises(AuthenticationError):
            await crud.create_post(session, gateway.storage, PostCreate(title="Anonymous"), None)

    @pytest.mark.asyncio
    async def test_uploads_cover_and_attachments(self, session, gateway, crud, author, make_image):
        post = await crud.create_post(
            session,
            gateway.storage,
            PostCreate(title="With files"),
            author,
            cover=make_image("cover.gif"),
            attachments=[make_image("one.gif"), make_image("two.gif")],
        )

        assert post.cover_url.startswith(f"http://testserver/storage/posts/covers/{author.id}/")
        assert len(post.attachments) == 2
        assert all(url.startswith(f"http://testserver/storage/posts/attachments/{author.id}/")
                   for url in post.attachments)
        assert len(stored_files(gateway)) == 3

    @pytest.mark.asyncio
    async def test_invalid_file_rejected_before_any_upload(self, session, gateway, crud, author, make_image):
        pdf = FileUpload(filename="doc.pdf", content_type="application/pdf", content=b"%PDF")

        with pytest.raises(FileValidationError):
            await crud.create_post(
                session, gateway.storage, PostCreate(title="Bad files"), author,
                cover=make_image(), attachments=[pdf],
            )

        assert stored_files(gateway) == []
        assert session.exec(select(Post)).all() == []

    @pytest.mark.asyncio
    async def test_oversized_cover_rejected(self, session, gateway, crud, author, make_image):
        with pytest.raises(FileValidationError):
            await crud.create_post(
                session, gateway.storage, PostCreate(title="Huge"), author,
                cover=make_image(size=2 * 1024 * 1024),
            )

    @pytest.mark.asyncio
    async def test_failed_write_removes_uploaded_files(self, session, gateway, crud, author, make_image, monkeypatch):
        def broken_save(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(crud, "_save", broken_save)

        with pytest.raises(RuntimeError):
            await crud.create_post(
                session, gateway.storage, PostCreate(title="Rolled back"), author,
                cover=make_image(), attachments=[make_image("a.gif")],
            )

        assert stored_files(gateway) == []


class TestUpdatePost:
    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, session, gateway, crud, author, tags):
        post = await crud.create_post(
            session, gateway.storage,
            PostCreate(title="Original", content="Body", tags=[tags["python"].id]),
            author,
        )

        updated = await crud.update_post(session, gateway.storage, post.id, PostUpdate(title="Renamed"), author)

        assert updated.title == "Renamed"
        assert updated.slug == "original"
        assert updated.content == "Body"
        assert tag_links(session, post.id) == [tags["python"].id]

    @pytest.mark.asyncio
    async def test_tags_are_replaced_and_cleared(self, session, gateway, crud, author, tags):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Tagged", tags=[tags["python"].id]), author
        )

        updated = await crud.update_post(
            session, gateway.storage, post.id,
            PostUpdate(tags=[tags["travel"].id, tags["python"].id]), author,
        )
        assert [t.slug for t in updated.tags_info] == ["travel", "python"]

        cleared = await crud.update_post(session, gateway.storage, post.id, PostUpdate(tags=[]), author)
        assert cleared.tags == []
        assert tag_links(session, post.id) == []

    @pytest.mark.asyncio
    async def test_new_attachments_are_appended(self, session, gateway, crud, author, make_image):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Files"), author, attachments=[make_image("a.gif")]
        )

        updated = await crud.update_post(
            session, gateway.storage, post.id, PostUpdate(), author, attachments=[make_image("b.gif")]
        )

        assert len(updated.attachments) == 2
        assert updated.attachments[0] == post.attachments[0]

    @pytest.mark.asyncio
    async def test_content_change_recomputes_reading_time(self, session, gateway, crud, author):
        post = await crud.create_post(session, gateway.storage, PostCreate(title="Short", content="a"), author)
        updated = await crud.update_post(
            session, gateway.storage, post.id, PostUpdate(content="a" * 1200), author
        )
        assert updated.reading_minutes == 3

    @pytest.mark.asyncio
    async def test_slug_change_to_existing_slug_conflicts(self, session, gateway, crud, author):
        await crud.create_post(session, gateway.storage, PostCreate(title="First"), author)
        second = await crud.create_post(session, gateway.storage, PostCreate(title="Second"), author)

        with pytest.raises(SlugConflictError):
            await crud.update_post(session, gateway.storage, second.id, PostUpdate(slug="first"), author)

    @pytest.mark.asyncio
    async def test_other_users_post_is_not_found(self, session, gateway, crud, author, reader):
        post = await crud.create_post(session, gateway.storage, PostCreate(title="Mine"), author)

        with pytest.raises(RecordNotFoundError):
            await crud.update_post(session, gateway.storage, post.id, PostUpdate(title="Yours"), reader)


class TestDeletePost:
    @pytest.mark.asyncio
    async def test_owner_can_delete(self, session, gateway, crud, author, tags):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Doomed", tags=[tags["python"].id]), author
        )
        session.add(Comment(post_id=post.id, author_id=author.id, content="bye"))
        session.commit()

        assert crud.delete_post(session, post.id, author) is True
        assert session.get(Post, post.id) is None
        assert tag_links(session, post.id) == []

    @pytest.mark.asyncio
    async def test_non_owner_delete_returns_false(self, session, gateway, crud, author, reader):
        post = await crud.create_post(session, gateway.storage, PostCreate(title="Protected"), author)

        assert crud.delete_post(session, post.id, reader) is False
        assert crud.delete_post(session, 9999, author) is False
        assert session.get(Post, post.id) is not None

    @pytest.mark.asyncio
    async def test_delete_attachment(self, session, gateway, crud, author, make_image):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Attachments"), author,
            attachments=[make_image("a.gif"), make_image("b.gif")],
        )

        updated = await crud.delete_attachment(session, gateway.storage, post.id, post.attachments[0], author)

        assert updated.attachments == [post.attachments[1]]
        assert len(stored_files(gateway)) == 1

    @pytest.mark.asyncio
    async def test_delete_attachment_survives_storage_failure(
        self, session, gateway, crud, author, make_image, monkeypatch
    ):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Sticky"), author, attachments=[make_image("a.gif")]
        )

        async def failing_remove(bucket, paths):
            raise OSError("storage offline")

        monkeypatch.setattr(gateway.storage, "remove", failing_remove)

        updated = await crud.delete_attachment(session, gateway.storage, post.id, post.attachments[0], author)
        assert updated.attachments == []

    @pytest.mark.asyncio
    async def test_delete_attachment_never_touches_other_users_files(
        self, session, gateway, crud, author, reader, make_image
    ):
        theirs = await crud.create_post(
            session, gateway.storage, PostCreate(title="Theirs"), reader,
            cover=make_image("cover.gif"), attachments=[make_image("a.gif")],
        )
        mine = await crud.create_post(session, gateway.storage, PostCreate(title="Mine"), author)

        with pytest.raises(RecordNotFoundError):
            await crud.delete_attachment(session, gateway.storage, mine.id, theirs.cover_url, author)

        # a foreign URL listed on the author's own post is unlinked but its file is kept
        await crud.update_post(
            session, gateway.storage, mine.id, PostUpdate(attachments=[theirs.attachments[0]]), author
        )
        updated = await crud.delete_attachment(session, gateway.storage, mine.id, theirs.attachments[0], author)

        assert updated.attachments == []
        assert len(stored_files(gateway)) == 2

    @pytest.mark.asyncio
    async def test_delete_attachment_removes_only_the_first_match(self, session, gateway, crud, author, make_image):
        post = await crud.create_post(
            session, gateway.storage, PostCreate(title="Twice"), author, attachments=[make_image("a.gif")]
        )
        url = post.attachments[0]
        await crud.update_post(session, gateway.storage, post.id, PostUpdate(attachments=[url, url]), author)

        updated = await crud.delete_attachment(session, gateway.storage, post.id, url, author)

        assert updated.attachments == [url]
        assert len(stored_files(gateway)) == 1
