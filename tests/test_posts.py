from __future__ import annotations
import json
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from conftest import ADMIN_HEADERS, STORAGE_BASE
from portal.models import Post, PostMedia, PostReport, PostStatus, User


def make_post(**kw) -> Post:
    fields = dict(author_name="Ana", content="Street light is out", category="outro")
    fields.update(kw)
    return Post(**fields)


def png(name: str = "photo.png"):
    return ("media", (name, b"\x89PNG fake", "image/png"))


async def count_posts(session_factory) -> int:
    async with session_factory() as s:
        return (await s.execute(select(func.count()).select_from(Post))).scalar_one()


async def test_create_requires_auth(client):
    r = await client.post("/api/posts", data={"content": "hi"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Authorization required for this action."}


async def test_create_rejects_blank_content_without_side_effects(client, signed_in, storage, session_factory):
    _, headers = signed_in()
    r = await client.post("/api/posts", data={"content": "   "}, files=[png()], headers=headers)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert storage.uploads == []
    assert await count_posts(session_factory) == 0


async def test_create_post_with_media(client, signed_in, storage, session_factory):
    user, headers = signed_in(fullName="Ana Souza")
    r = await client.post(
        "/api/posts",
        data={"content": " Buraco na rua ", "category": "outro", "customCategory": "Obras", "alertUsers": "on"},
        files=[png("a.png"), ("media", ("clip.MP4", b"video", "video/mp4"))],
        headers=headers,
    )
    assert r.status_code == 201
    post = r.json()["post"]
    assert post["status"] == "PENDING"
    assert post["content"] == "Buraco na rua"
    assert post["category"] == "Obras"
    assert post["alertUsers"] is True
    assert post["authorName"] == "Ana Souza"
    assert post["reports"] == []
    assert [m["mimeType"] for m in post["media"]] == ["image/png", "video/mp4"]

    paths = [p for _, p in storage.uploads]
    assert all(p.startswith(f"posts/{user.id}/") for p in paths)
    assert paths[1].endswith(".mp4")
    assert post["media"][0]["url"].startswith(f"{STORAGE_BASE}/posts/posts/{user.id}/")

    async with session_factory() as s:
        author = (await s.execute(select(User).where(User.supabase_id == user.id))).scalar_one()
        assert str(author.id) == post["authorId"]


async def test_failed_upload_removes_earlier_files(client, signed_in, storage, session_factory):
    _, headers = signed_in()
    storage.fail_on_upload = 3
    r = await client.post(
        "/api/posts",
        data={"content": "three files"},
        files=[png("1.png"), png("2.png"), png("3.png")],
        headers=headers,
    )
    assert r.status_code == 500
    assert len(storage.uploads) == 2
    assert sorted(storage.removed) == sorted(storage.uploads)
    assert await count_posts(session_factory) == 0


async def test_failure_after_uploads_removes_all_files(client, signed_in, storage, session_factory, monkeypatch):
    async def broken_author(db, provider_user):
        raise RuntimeError("database went away")

    monkeypatch.setattr("portal.api.posts.ensure_author", broken_author)
    _, headers = signed_in()
    r = await client.post(
        "/api/posts",
        data={"content": "two files"},
        files=[png("1.png"), png("2.png")],
        headers=headers,
    )
    assert r.status_code == 500
    assert r.json()["message"] == "Could not submit the post for approval."
    assert len(storage.uploads) == 2
    assert storage.removed == storage.uploads
    assert await count_posts(session_factory) == 0


async def test_disallowed_media_type_removes_earlier_files(client, signed_in, storage):
    _, headers = signed_in()
    r = await client.post(
        "/api/posts",
        data={"content": "mixed"},
        files=[png(), ("media", ("notes.txt", b"text", "text/plain"))],
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["message"] == "Only image or video files are allowed."
    assert storage.removed == storage.uploads
    assert len(storage.uploads) == 1


async def test_too_many_media_files(client, signed_in, storage):
    _, headers = signed_in()
    files = [png(f"{i}.png") for i in range(7)]
    r = await client.post("/api/posts", data={"content": "lots"}, files=files, headers=headers)
    assert r.status_code == 400
    assert storage.uploads == []


async def test_poll_needs_two_options(client, signed_in):
    _, headers = signed_in()
    r = await client.post(
        "/api/posts",
        data={"content": "vote", "pollQuestion": "When?", "pollOptions": "Monday"},
        headers=headers,
    )
    assert r.status_code == 400


async def test_create_post_from_json_with_poll(client, signed_in):
    _, headers = signed_in()
    r = await client.post(
        "/api/posts",
        json={"content": "vote", "pollQuestion": "When?", "pollOptions": json.dumps(["Monday", " Friday "])},
        headers=headers,
    )
    assert r.status_code == 201
    poll = r.json()["post"]["poll"]
    assert poll["question"] == "When?"
    assert poll["options"] == [
        {"id": "opt1", "text": "Monday", "votes": 0},
        {"id": "opt2", "text": "Friday", "votes": 0},
    ]


async def test_list_defaults_to_approved(client, seed):
    now = datetime.now(timezone.utc)
    await seed(
        make_post(content="old", status=PostStatus.APPROVED, created_at=now - timedelta(hours=2)),
        make_post(content="new", status=PostStatus.APPROVED, created_at=now - timedelta(hours=1)),
        make_post(content="waiting", status=PostStatus.PENDING),
        make_post(content="nope", status=PostStatus.REJECTED),
    )
    r = await client.get("/api/posts")
    assert [p["content"] for p in r.json()["posts"]] == ["new", "old"]

    r = await client.get("/api/posts", params={"status": "bogus"})
    assert len(r.json()["posts"]) == 2

    r = await client.get("/api/posts", params={"status": "all"})
    assert len(r.json()["posts"]) == 4

    r = await client.get("/api/posts", params={"status": "PENDING"})
    assert [p["content"] for p in r.json()["posts"]] == ["waiting"]

    r = await client.get("/api/posts", params={"status": "ALL", "limit": "1"})
    assert len(r.json()["posts"]) == 1


async def test_list_filters_alerts_and_reports(client, seed):
    alert = make_post(content="alert", status=PostStatus.APPROVED, alert_users=True)
    reported = make_post(content="reported", status=PostStatus.APPROVED)
    reported.reports = [PostReport(reason="spam"), PostReport(reason="rude")]
    await seed(alert, reported, make_post(content="plain", status=PostStatus.APPROVED))

    r = await client.get("/api/posts", params={"alertOnly": "true"})
    assert [p["content"] for p in r.json()["posts"]] == ["alert"]

    r = await client.get("/api/posts", params={"hasReports": "1", "includeReports": "yes"})
    posts = r.json()["posts"]
    assert [p["content"] for p in posts] == ["reported"]
    assert posts[0]["reportsCount"] == 2
    assert {rep["reason"] for rep in posts[0]["reports"]} == {"spam", "rude"}

    r = await client.get("/api/posts", params={"hasReports": "1"})
    assert r.json()["posts"][0]["reports"] is None


async def test_approve_is_idempotent(client, seed):
    post = await seed(make_post())
    first = await client.patch(f"/api/posts/{post.id}/approve", headers=ADMIN_HEADERS)
    assert first.status_code == 200
    assert first.json()["post"]["status"] == "APPROVED"
    assert first.json()["post"]["approvedAt"] is not None

    second = await client.patch(f"/api/posts/{post.id}/approve", headers=ADMIN_HEADERS)
    assert second.status_code == 200
    assert second.json()["post"]["approvedAt"] == first.json()["post"]["approvedAt"]


async def test_moderation_requires_admin_secret(client, seed):
    post = await seed(make_post())
    r = await client.patch(f"/api/posts/{post.id}/approve")
    assert r.status_code == 401
    r = await client.patch(f"/api/posts/{post.id}/approve", headers={"X-Admin-Secret": "wrong"})
    assert r.status_code == 401
    r = await client.patch(f"/api/posts/{post.id}/approve", headers={"Authorization": "Bearer admin-test-secret"})
    assert r.status_code == 200


async def test_approve_missing_post(client):
    r = await client.patch(f"/api/posts/{uuid.uuid4()}/approve", headers=ADMIN_HEADERS)
    assert r.status_code == 404


async def test_invalid_post_id_is_bad_request(client):
    r = await client.post("/api/posts/not-a-uuid/share")
    assert r.status_code == 400
    assert r.json()["success"] is False


async def test_reject_clears_alert(client, seed):
    post = await seed(make_post(alert_users=True))
    r = await client.patch(f"/api/posts/{post.id}/reject", json={"reason": " off topic "}, headers=ADMIN_HEADERS)
    body = r.json()["post"]
    assert body["status"] == "REJECTED"
    assert body["rejectedReason"] == "off topic"
    assert body["alertUsers"] is False

    r = await client.patch(f"/api/posts/{post.id}/reject", headers=ADMIN_HEADERS)
    assert r.json()["post"]["rejectedReason"] is None


async def test_alert_flag(client, seed):
    post = await seed(make_post(status=PostStatus.APPROVED))
    r = await client.patch(f"/api/posts/{post.id}/alert", json={"alertUsers": True}, headers=ADMIN_HEADERS)
    assert r.json()["post"]["alertUsers"] is True
    assert r.json()["post"]["status"] == "APPROVED"


async def test_likes_never_go_negative(client, seed):
    post = await seed(make_post(status=PostStatus.APPROVED))
    r = await client.post(f"/api/posts/{post.id}/like", json={"action": "decrement"})
    assert r.json() == {"success": True, "likes": 0}
    r = await client.post(f"/api/posts/{post.id}/like")
    assert r.json()["likes"] == 1
    r = await client.post(f"/api/posts/{post.id}/like", json={"action": "increment"})
    assert r.json()["likes"] == 2
    r = await client.post(f"/api/posts/{post.id}/like", json={"action": "decrement"})
    assert r.json()["likes"] == 1


async def test_like_missing_post(client):
    r = await client.post(f"/api/posts/{uuid.uuid4()}/like")
    assert r.status_code == 404


async def test_share_counts(client, seed):
    post = await seed(make_post(status=PostStatus.APPROVED, shares=4))
    r = await client.post(f"/api/posts/{post.id}/share")
    assert r.json() == {"success": True, "shares": 5}


async def test_report_and_list_reports(client, seed):
    post = await seed(make_post(status=PostStatus.APPROVED))
    r = await client.post(f"/api/posts/{post.id}/report", json={"reason": "spam"})
    assert r.status_code == 201
    report = r.json()["report"]
    assert report["reason"] == "spam"
    assert report["postId"] == str(post.id)

    r = await client.post(f"/api/posts/{post.id}/report", json={})
    assert r.json()["report"]["reason"] is None

    r = await client.get("/api/posts/reports/all", headers=ADMIN_HEADERS)
    posts = r.json()["posts"]
    assert len(posts) == 1
    assert posts[0]["reportsCount"] == 2

    r = await client.post(f"/api/posts/{uuid.uuid4()}/report", json={"reason": "spam"})
    assert r.status_code == 404


async def test_poll_vote(client, seed):
    options = [{"id": "opt1", "text": "Yes", "votes": 0}, {"id": "opt2", "text": "No", "votes": 3}]
    post = await seed(make_post(status=PostStatus.APPROVED, poll_question="Paint it?", poll_options=options))

    r = await client.post(f"/api/posts/{post.id}/poll/vote", json={"optionId": "opt2"})
    assert r.status_code == 200
    assert r.json()["poll"]["options"][1]["votes"] == 4

    r = await client.get("/api/posts")
    assert r.json()["posts"][0]["poll"]["options"][1]["votes"] == 4

    r = await client.post(f"/api/posts/{post.id}/poll/vote", json={"optionId": "opt9"})
    assert r.status_code == 404
    r = await client.post(f"/api/posts/{post.id}/poll/vote", json={})
    assert r.status_code == 400


async def test_poll_vote_rules(client, seed):
    pending = await seed(make_post(poll_question="Q", poll_options=[{"id": "opt1", "text": "a", "votes": 0}]))
    r = await client.post(f"/api/posts/{pending.id}/poll/vote", json={"optionId": "opt1"})
    assert r.status_code == 400

    no_poll = await seed(make_post(status=PostStatus.APPROVED))
    r = await client.post(f"/api/posts/{no_poll.id}/poll/vote", json={"optionId": "opt1"})
    assert r.status_code == 400


async def test_author_deletes_approved_post(client, seed, signed_in, storage, session_factory):
    user, headers = signed_in()
    author = await seed(User(full_name="Ana", username="ana", email=user.email, supabase_id=user.id))
    post = make_post(author_id=author.id, status=PostStatus.APPROVED)
    post.media = [PostMedia(url="u", storage_path="posts/x/1.png", mime_type="image/png")]
    await seed(post)

    r = await client.delete(f"/api/posts/{post.id}", headers=headers)
    assert r.status_code == 200
    assert storage.removed == [("posts", "posts/x/1.png")]
    assert await count_posts(session_factory) == 0


async def test_delete_post_rules(client, seed, signed_in):
    user, headers = signed_in()
    author = await seed(User(full_name="Ana", username="ana", email=user.email, supabase_id=user.id))
    pending = await seed(make_post(author_id=author.id))
    r = await client.delete(f"/api/posts/{pending.id}", headers=headers)
    assert r.status_code == 400

    _, other_headers = signed_in("bia@example.com")
    approved = await seed(make_post(author_id=author.id, status=PostStatus.APPROVED))
    r = await client.delete(f"/api/posts/{approved.id}", headers=other_headers)
    assert r.status_code == 403

    r = await client.delete(f"/api/posts/{uuid.uuid4()}", headers=headers)
    assert r.status_code == 404


async def test_delete_prefers_provider_id_over_email_match(client, seed, signed_in):
    user, headers = signed_in()
    await seed(User(full_name="Old Ana", username="old-ana", email=user.email))
    author = await seed(User(full_name="Ana", username="ana", email="ana.new@example.com", supabase_id=user.id))
    post = await seed(make_post(author_id=author.id, status=PostStatus.APPROVED))

    r = await client.delete(f"/api/posts/{post.id}", headers=headers)
    assert r.status_code == 200
