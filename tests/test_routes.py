import pytest
from fastapi.testclient import TestClient

from inkpost.core.config import Settings
from inkpost.main import create_app
from inkpost.services.gateway import create_gateway

PASSWORD = "TestPassword123"


def create_post(client: TestClient, headers: dict, title: str, files=None, **fields):
    data = {"title": title, "content": fields.pop("content", "Hello there"), **fields}
    response = client.post("/posts", data=data, files=files, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def gif_file(field: str, filename: str, make_image):
    return (field, (filename, make_image(filename).content, "image/gif"))


class TestAuthRoutes:
    def test_signup_signs_in(self, client: TestClient):
        response = client.post("/signup", json={
            "email": "new@example.com",
            "password": PASSWORD,
            "username": "newbie"
        })

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == "new@example.com"
        assert data["user"]["user_metadata"]["username"] == "newbie"
        assert "access_token" in response.cookies

    def test_signup_username_taken(self, client: TestClient, author):
        response = client.post("/signup", json={
            "email": "other@example.com",
            "password": PASSWORD,
            "username": "author"
        })

        assert response.status_code == 409

    def test_signup_weak_password(self, client: TestClient):
        response = client.post("/signup", json={
            "email": "weak@example.com",
            "password": "123",
            "username": "weak"
        })

        assert response.status_code == 422

    def test_login_errors_are_identical(self, client: TestClient, author):
        unknown = client.post("/login", json={"identifier": "nobody", "password": PASSWORD})
        wrong = client.post("/login", json={"identifier": "author", "password": "wrong-password"})

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_logout_revokes_session(self, client: TestClient, author, login_as):
        headers = login_as("author")

        response = client.post("/logout", headers=headers)
        assert response.status_code == 200

        response = client.get("/account", headers=headers, follow_redirects=False)
        assert response.status_code == 302

    def test_change_password(self, client: TestClient, author, login_as):
        headers = login_as("author")

        wrong = client.put("/account/password", headers=headers, json={
            "current_password": "nope",
            "new_password": "NewPassword456"
        })
        assert wrong.status_code == 400

        ok = client.put("/account/password", headers=headers, json={
            "current_password": PASSWORD,
            "new_password": "NewPassword456"
        })
        assert ok.status_code == 200
        login_as("author", "NewPassword456")

    def test_refresh(self, client: TestClient, author):
        session = client.post("/login", json={"identifier": "author", "password": PASSWORD}).json()

        response = client.post("/auth/refresh", json={"refresh_token": session["refresh_token"]})

        assert response.status_code == 200
        assert response.json()["access_token"] != session["access_token"]

        reused = client.post("/auth/refresh", json={"refresh_token": session["refresh_token"]})
        assert reused.status_code == 401


class TestPostRoutes:
    def test_create_with_files(self, client: TestClient, author, tags, login_as, make_image):
        headers = login_as("author")

        post = create_post(
            client, headers, "Trip notes",
            files=[gif_file("cover", "cover.gif", make_image), gif_file("attachments", "a.gif", make_image)],
            status="published",
            published_at="2024-02-01T10:00:00",
            tags=[str(tags["travel"].id)],
        )

        assert post["slug"] == "trip-notes"
        assert post["cover_url"].startswith("http://testserver/storage/posts/covers/")
        assert len(post["attachments"]) == 1
        assert [t["slug"] for t in post["tags_info"]] == ["travel"]

        stored = client.get(post["cover_url"].replace("http://testserver", ""))
        assert stored.status_code == 200
        assert stored.content == make_image("cover.gif").content

    def test_create_requires_sign_in(self, client: TestClient):
        response = client.post("/posts", data={"title": "Anonymous"})
        assert response.status_code == 401

    def test_create_rejects_non_images(self, client: TestClient, author, login_as):
        headers = login_as("author")

        response = client.post(
            "/posts",
            data={"title": "Bad"},
            files=[("cover", ("doc.pdf", b"%PDF-1.4", "application/pdf"))],
            headers=headers,
        )

        assert response.status_code == 400

    def test_slug_conflict(self, client: TestClient, author, login_as):
        headers = login_as("author")
        create_post(client, headers, "Same Title")

        response = client.post("/posts", data={"title": "same title"}, headers=headers)

        assert response.status_code == 409

    def test_list_and_filter(self, client: TestClient, author, tags, login_as):
        headers = login_as("author")
        create_post(client, headers, "Python tips", status="published",
                    published_at="2024-01-10T09:00:00", tags=[str(tags["python"].id)])
        create_post(client, headers, "Travel log", status="published", published_at="2024-03-01T09:00:00")
        create_post(client, headers, "Secret draft")

        assert [p["slug"] for p in client.get("/posts").json()] == ["travel-log", "python-tips"]
        assert [p["slug"] for p in client.get("/posts?tag=python").json()] == ["python-tips"]
        assert len(client.get("/posts?tag=unknown").json()) == 2
        assert client.get("/posts?tag=unknown&tag_miss_policy=empty").json() == []
        assert [p["slug"] for p in client.get("/posts?keyword=log").json()] == ["travel-log"]
        assert [p["slug"] for p in client.get("/posts?start_date=2024-02-01").json()] == ["travel-log"]
        assert [p["slug"] for p in client.get("/posts?sort=published_at_asc").json()] == ["python-tips", "travel-log"]

        home = client.get("/").json()
        assert len(home["posts"]) == 2
        assert [t["slug"] for t in home["tags"]] == ["python", "travel"]

    def test_drafts_are_private(self, client: TestClient, author, reader, login_as):
        author_headers = login_as("author")
        create_post(client, author_headers, "Secret draft")

        assert client.get("/posts?status=draft").status_code == 401
        assert client.get("/post/secret-draft").status_code == 404

        reader_headers = login_as("reader")
        assert client.get("/posts?status=draft", headers=reader_headers).json() == []

        drafts = client.get("/posts?status=draft", headers=author_headers).json()
        assert [p["slug"] for p in drafts] == ["secret-draft"]
        assert client.get("/post/secret-draft", headers=author_headers).status_code == 200

    def test_missing_post_is_404(self, client: TestClient):
        assert client.get("/post/does-not-exist").status_code == 404

    def test_edit_page_is_owner_only(self, client: TestClient, author, reader, login_as):
        create_post(client, login_as("author"), "Mine", status="published")

        assert client.get("/post/mine/edit", headers=login_as("author")).status_code == 200
        assert client.get("/post/mine/edit", headers=login_as("reader")).status_code == 404

    def test_update_post(self, client: TestClient, author, tags, login_as):
        headers = login_as("author")
        post = create_post(client, headers, "Before", tags=[str(tags["python"].id)])

        response = client.put(f"/posts/{post['id']}", headers=headers, json={"title": "After", "tags": []})

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "After"
        assert data["slug"] == "before"
        assert data["tags_info"] == []

    def test_upload_more_files(self, client: TestClient, author, login_as, make_image):
        headers = login_as("author")
        post = create_post(client, headers, "Gallery", files=[gif_file("attachments", "a.gif", make_image)])

        response = client.post(
            f"/posts/{post['id']}/files",
            headers=headers,
            files=[gif_file("attachments", "b.gif", make_image)],
        )

        assert response.status_code == 200
        assert len(response.json()["attachments"]) == 2

    def test_delete_attachment(self, client: TestClient, author, login_as, make_image):
        headers = login_as("author")
        post = create_post(client, headers, "Cleanup", files=[gif_file("attachments", "a.gif", make_image)])
        url = post["attachments"][0]

        response = client.delete(f"/posts/{post['id']}/attachments", params={"url": url}, headers=headers)

        assert response.status_code == 200
        assert response.json()["attachments"] == []
        assert client.get(url.replace("http://testserver", "")).status_code == 404

    def test_delete_attachment_rejects_urls_from_other_posts(
        self, client: TestClient, author, reader, login_as, make_image
    ):
        reader_headers = login_as("reader")
        theirs = create_post(client, reader_headers, "Theirs", files=[gif_file("cover", "c.gif", make_image)])
        author_headers = login_as("author")
        mine = create_post(client, author_headers, "Mine")

        response = client.delete(
            f"/posts/{mine['id']}/attachments", params={"url": theirs["cover_url"]}, headers=author_headers
        )

        assert response.status_code == 404
        assert client.get(theirs["cover_url"].replace("http://testserver", "")).status_code == 200

    def test_delete_post(self, client: TestClient, author, reader, login_as):
        author_headers = login_as("author")
        post = create_post(client, author_headers, "Short lived")

        assert client.delete(f"/posts/{post['id']}", headers=login_as("reader")).status_code == 404
        assert client.delete(f"/posts/{post['id']}", headers=author_headers).status_code == 204
        assert client.delete(f"/posts/{post['id']}", headers=author_headers).status_code == 404

    def test_dashboard(self, client: TestClient, author, login_as):
        headers = login_as("author")
        create_post(client, headers, "One", content="a" * 800, status="published")
        create_post(client, headers, "Two", content="")

        stats = client.get("/dashboard", headers=headers).json()

        assert stats["total_posts"] == 2
        assert stats["published_posts"] == 1
        assert stats["draft_posts"] == 1
        assert stats["total_reading_minutes"] == 2
        assert len(stats["recent_posts"]) == 2


class TestCommentRoutes:
    def test_comment_flow(self, client: TestClient, author, reader, login_as):
        post = create_post(client, login_as("author"), "Discuss", status="published")

        response = client.post(f"/posts/{post['id']}/comments", headers=login_as("reader"), json={"content": "Hi!"})
        assert response.status_code == 201
        assert response.json()["status"] == "approved"

        comments = client.get(f"/posts/{post['id']}/comments").json()
        assert [c["content"] for c in comments] == ["Hi!"]
        assert comments[0]["author"]["username"] == "reader"

    def test_comment_requires_sign_in(self, client: TestClient, author, login_as):
        post = create_post(client, login_as("author"), "Quiet", status="published")
        response = client.post(f"/posts/{post['id']}/comments", json={"content": "anon"})
        assert response.status_code == 401

    def test_empty_comment_rejected(self, client: TestClient, author, login_as):
        headers = login_as("author")
        post = create_post(client, headers, "Strict", status="published")
        response = client.post(f"/posts/{post['id']}/comments", headers=headers, json={"content": "   "})
        assert response.status_code == 422


@pytest.fixture(name="moderated_client")
def moderated_client_fixture(tmp_path):
    settings = Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://testserver",
        COMMENTS_REQUIRE_APPROVAL=True,
    )
    gateway = create_gateway(settings)
    yield TestClient(create_app(settings, gateway))
    gateway.engine.dispose()


def test_comment_moderation(moderated_client: TestClient):
    client = moderated_client
    for email, username in (("author@example.com", "author"), ("reader@example.com", "reader")):
        assert client.post("/signup", json={"email": email, "password": PASSWORD, "username": username}).status_code == 201
    client.cookies.clear()

    author_headers = {"Authorization": f"Bearer {client.post('/login', json={'identifier': 'author', 'password': PASSWORD}).json()['access_token']}"}
    reader_headers = {"Authorization": f"Bearer {client.post('/login', json={'identifier': 'reader', 'password': PASSWORD}).json()['access_token']}"}
    client.cookies.clear()

    post = create_post(client, author_headers, "Moderated", status="published")
    comment = client.post(f"/posts/{post['id']}/comments", headers=reader_headers, json={"content": "Please approve"}).json()
    assert comment["status"] == "pending"
    assert client.get(f"/posts/{post['id']}/comments").json() == []

    assert client.get(f"/posts/{post['id']}/comments/pending", headers=reader_headers).status_code == 403
    pending = client.get(f"/posts/{post['id']}/comments/pending", headers=author_headers).json()
    assert [c["id"] for c in pending] == [comment["id"]]

    denied = client.post(f"/comments/{comment['id']}/moderation", headers=reader_headers, json={"decision": "approve"})
    assert denied.status_code == 403

    approved = client.post(f"/comments/{comment['id']}/moderation", headers=author_headers, json={"decision": "approve"})
    assert approved.json()["status"] == "approved"

    again = client.post(f"/comments/{comment['id']}/moderation", headers=author_headers, json={"decision": "reject"})
    assert again.status_code == 409


class TestProfileRoutes:
    def test_get_and_update_profile(self, client: TestClient, author, reader, login_as):
        headers = login_as("author")

        assert client.get("/profile", headers=headers).json()["username"] == "author"

        taken = client.put("/profile", headers=headers, json={"username": "reader"})
        assert taken.status_code == 409

        response = client.put("/profile", headers=headers, json={"username": "writer"})
        assert response.json()["username"] == "writer"
        assert client.get("/account", headers=headers).json()["user_metadata"]["username"] == "writer"

    def test_upload_avatar(self, client: TestClient, author, login_as, make_image):
        headers = login_as("author")

        response = client.post("/profile/avatar", headers=headers, files=[gif_file("file", "me.gif", make_image)])

        assert response.status_code == 200
        avatar_url = response.json()["avatar_url"]
        assert client.get("/profile", headers=headers).json()["avatar_url"] == avatar_url
        assert client.get(avatar_url.replace("http://testserver", "")).status_code == 200

    def test_avatar_must_be_an_image(self, client: TestClient, author, login_as):
        headers = login_as("author")
        response = client.post("/profile/avatar", headers=headers, files=[("file", ("me.txt", b"hello", "text/plain"))])
        assert response.status_code == 400


def test_health(client: TestClient):
    assert client.get("/health").json() == {"status": "healthy"}


def test_storage_rejects_path_escape(client: TestClient):
    assert client.get("/storage/posts/..%2F..%2Fsecret").status_code == 404
    assert client.get("/storage/private/file.gif").status_code == 404
