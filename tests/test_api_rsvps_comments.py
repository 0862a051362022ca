"""
Tests for RSVPs, comments, follows and notification settings.
"""

from conftest import ride_body


def _ride(client, login, owner, **overrides):
    login(owner)
    return client.post("/api/rides", json=ride_body(**overrides)).get_json()


class TestRsvps:
    def test_going_then_list(self, client, login, user, other_user):
        ride = _ride(client, login, user)
        login(other_user)
        resp = client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "GOING"

        rsvps = client.get(f"/api/rsvps?rideId={ride['id']}").get_json()
        assert len(rsvps) == 2
        assert all("email" not in r["user"] for r in rsvps)

    def test_organizer_sees_emails(self, client, login, user, other_user):
        ride = _ride(client, login, user)
        rsvps = client.get(f"/api/rsvps?rideId={ride['id']}").get_json()
        assert rsvps[0]["user"]["email"] == "rider@example.com"

    def test_validation(self, client, login, user):
        ride = _ride(client, login, user)
        assert client.post("/api/rsvps", json={"status": "GOING"}).get_json()["error"] == "rideId is required"
        resp = client.post("/api/rsvps", json={"rideId": ride["id"], "status": "YES"})
        assert resp.get_json()["error"] == "Invalid status"
        resp = client.post("/api/rsvps", json={"rideId": "missing", "status": "GOING"})
        assert resp.status_code == 404

    def test_capacity(self, client, login, user, other_user, db):
        ride = _ride(client, login, user, maxAttendees=1)
        login(other_user)
        resp = client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Ride is at capacity"

        # Already-going riders can re-confirm, others can still say maybe.
        login(user)
        assert client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"}).status_code == 200
        login(other_user)
        assert client.post("/api/rsvps", json={"rideId": ride["id"], "status": "MAYBE"}).status_code == 200

    def test_unpublished(self, client, login, user, db):
        ride = _ride(client, login, user)
        db.update_ride(ride["id"], {"status": "DRAFT"})
        resp = client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"})
        assert resp.get_json()["error"] == "Cannot RSVP to unpublished ride"

    def test_rate_limited(self, client, login, user, monkeypatch):
        from rideswith.rate_limiter import rsvp_limiter
        monkeypatch.setattr(rsvp_limiter, "limit", 1)
        ride = _ride(client, login, user)
        client.post("/api/rsvps", json={"rideId": ride["id"], "status": "MAYBE"})
        resp = client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"})
        assert resp.status_code == 429
        assert resp.get_json()["error"] == "Too many requests"

    def test_auto_follow_chapter(self, client, login, user, other_user, db):
        brand = db.create_brand(name="Club", slug="club", created_by_id=user["id"])
        chapter = db.create_chapter(brand["id"], "Berlin", "berlin", "Berlin", user["id"])
        ride = _ride(client, login, user, chapterId=chapter["id"])

        login(other_user)
        client.post("/api/rsvps", json={"rideId": ride["id"], "status": "MAYBE"})
        follows = db.get_follows(other_user["id"])
        assert [f["chapter_id"] for f in follows] == [chapter["id"]]

    def test_auto_follow_disabled(self, client, login, user, other_user, db):
        brand = db.create_brand(name="Club", slug="club", created_by_id=user["id"])
        chapter = db.create_chapter(brand["id"], "Berlin", "berlin", "Berlin", user["id"])
        ride = _ride(client, login, user, chapterId=chapter["id"])
        db.set_notification_settings(other_user["id"], False)

        login(other_user)
        client.post("/api/rsvps", json={"rideId": ride["id"], "status": "GOING"})
        assert db.get_follows(other_user["id"]) == []

    def test_delete(self, client, login, user):
        ride = _ride(client, login, user)
        resp = client.delete(f"/api/rsvps?rideId={ride['id']}")
        assert resp.get_json() == {"success": True}
        # Nothing left to remove.
        resp = client.delete(f"/api/rsvps?rideId={ride['id']}")
        assert resp.status_code == 500
        assert resp.get_json()["error"] == "Failed to remove RSVP"


class TestComments:
    def test_create_and_list(self, client, login, user):
        ride = _ride(client, login, user)
        resp = client.post(f"/api/rides/{ride['id']}/comments", json={"content": "  See you there  "})
        assert resp.status_code == 201
        assert resp.get_json()["content"] == "See you there"

        comments = client.get(f"/api/rides/{ride['id']}/comments").get_json()
        assert comments[0]["user"]["name"] == "Rider One"

    def test_validation(self, client, login, user):
        ride = _ride(client, login, user)
        url = f"/api/rides/{ride['id']}/comments"
        assert client.post(url, json={"content": " "}).get_json()["error"] == "Comment content is required"
        resp = client.post(url, json={"content": "x" * 2001})
        assert resp.get_json()["error"] == "Comment is too long (max 2000 characters)"
        resp = client.post("/api/rides/missing/comments", json={"content": "hi"})
        assert resp.status_code == 404

    def test_delete_permissions(self, client, login, user, other_user, db):
        ride = _ride(client, login, user)
        third = db.create_user("third@example.com")
        login(other_user)
        comment = client.post(f"/api/rides/{ride['id']}/comments", json={"content": "hi"}).get_json()
        url = f"/api/rides/{ride['id']}/comments?commentId={comment['id']}"

        login(third)
        resp = client.delete(url)
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Forbidden"

        # The ride organizer can moderate.
        login(user)
        assert client.delete(url).get_json() == {"success": True}

    def test_delete_wrong_ride(self, client, login, user):
        ride = _ride(client, login, user)
        other = client.post("/api/rides", json=ride_body(title="Other")).get_json()
        comment = client.post(f"/api/rides/{ride['id']}/comments", json={"content": "hi"}).get_json()
        resp = client.delete(f"/api/rides/{other['id']}/comments?commentId={comment['id']}")
        assert resp.status_code == 404
        assert client.delete(f"/api/rides/{ride['id']}/comments").status_code == 400


class TestFollows:
    def test_follow_and_unfollow(self, client, login, user, db):
        brand = db.create_brand(name="Club", slug="club", created_by_id=user["id"])
        login(user)
        resp = client.post("/api/follows", json={"brandId": brand["id"]})
        assert resp.status_code == 200
        follows = client.get("/api/follows").get_json()["follows"]
        assert follows[0]["brand"]["slug"] == "club"

        assert client.delete(f"/api/follows?brandId={brand['id']}").get_json() == {"success": True}
        assert client.get("/api/follows").get_json() == {"follows": []}

    def test_validation(self, client, login, user, db):
        login(user)
        assert client.post("/api/follows", json={}).get_json()["error"] == "brandId or chapterId is required"
        resp = client.post("/api/follows", json={"brandId": "a", "chapterId": "b"})
        assert resp.get_json()["error"] == "Can only follow one entity at a time"
        assert client.post("/api/follows", json={"chapterId": "nope"}).status_code == 404
        assert client.delete("/api/follows").get_json()["error"] == "brandId, chapterId, or id is required"


class TestNotificationSettings:
    def test_get_creates_defaults(self, client, login, user, db):
        login(user)
        data = client.get("/api/notifications/settings").get_json()
        assert data == {"userId": user["id"], "autoFollowOnRsvp": True}
        assert db.get_notification_settings(user["id"]) is not None

    def test_put(self, client, login, user):
        login(user)
        data = client.put("/api/notifications/settings", json={"autoFollowOnRsvp": False}).get_json()
        assert data["autoFollowOnRsvp"] is False
        data = client.put("/api/notifications/settings", json={}).get_json()
        assert data["autoFollowOnRsvp"] is False
