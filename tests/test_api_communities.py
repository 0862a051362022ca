"""
Tests for communities, chapters, chapter members and the platform admin API.
"""

from unittest.mock import patch

import pytest

from rideswith.brand_dev import BrandAssets


@pytest.fixture
def admin(db):
    return db.create_user("admin@example.com", name="Admin", role="PLATFORM_ADMIN")


def _community(client, login, owner, **body):
    login(owner)
    payload = {"name": "Straede Cycling"}
    payload.update(body)
    return client.post("/api/communities", json=payload)


def _chapter(client, login, owner, brand_id, city="Berlin"):
    login(owner)
    return client.post("/api/chapters", json={"brandId": brand_id, "name": f"{city} Crew", "city": city})


class TestCommunities:
    def test_create(self, client, login, user):
        resp = _community(client, login, user, type="CLUB")
        assert resp.status_code == 201
        brand = resp.get_json()
        assert brand["slug"] == "straede-cycling"
        assert brand["type"] == "CLUB"
        assert brand["createdById"] == user["id"]

    def test_name_too_short(self, client, login, user):
        resp = _community(client, login, user, name="x")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Brand name must be at least 2 characters"

    def test_reserved_and_duplicate_slugs(self, client, login, user):
        assert _community(client, login, user, name="Admin").get_json()["slug"] == "admin-community"
        first = _community(client, login, user, name="Straede").get_json()
        second = _community(client, login, user, name="Straede").get_json()
        assert first["slug"] == "straede"
        assert second["slug"].startswith("straede-")
        assert second["slug"] != "straede"

    def test_unknown_type_defaults_to_brand(self, client, login, user):
        assert _community(client, login, user, type="CULT").get_json()["type"] == "BRAND"

    def test_brand_assets_from_domain(self, client, login, user):
        assets = BrandAssets(logo="https://cdn.brandfetch.io/l.png", primary_color="#123456",
                             fonts={"title": "Inter"})
        with patch("rideswith.web.api.fetch_brand_assets", return_value=assets) as fetch:
            brand = _community(client, login, user, domain="https://www.straede.com/").get_json()
        fetch.assert_called_once_with("straede.com")
        assert brand["logo"] == "https://cdn.brandfetch.io/l.png"
        assert brand["primaryColor"] == "#123456"
        assert brand["fonts"] == {"title": "Inter"}

    def test_list_and_get(self, client, login, user):
        brand = _community(client, login, user).get_json()
        _chapter(client, login, user, brand["id"])
        listed = client.get("/api/communities").get_json()
        assert listed[0]["_count"] == {"chapters": 1}
        assert listed[0]["chapters"][0]["city"] == "Berlin"

        detail = client.get(f"/api/communities/{brand['slug']}").get_json()
        assert detail["createdBy"]["name"] == "Rider One"
        assert detail["chapters"][0]["_count"] == {"rides": 0}
        assert detail["chapters"][0]["members"][0]["role"] == "LEAD"
        assert client.get("/api/communities/nope").status_code == 404

    def test_update_by_owner_only(self, client, login, user, other_user):
        brand = _community(client, login, user).get_json()
        url = f"/api/communities/{brand['slug']}"

        login(other_user)
        resp = client.put(url, json={"name": "Mine"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "You don't have permission to edit this brand"

        login(user)
        updated = client.put(url, json={"name": "Renamed", "instagram": "straede", "type": "GROUP"}).get_json()
        assert updated["name"] == "Renamed"
        assert updated["instagram"] == "straede"
        assert updated["type"] == "GROUP"

    def test_refresh_branding_keeps_stored_values_as_fallback(self, client, login, user):
        first = BrandAssets(logo="https://cdn.brandfetch.io/old.png", primary_color="#123456")
        with patch("rideswith.web.api.fetch_brand_assets", return_value=first):
            brand = _community(client, login, user, domain="straede.com").get_json()

        fresh = BrandAssets(logo="https://cdn.brandfetch.io/new.png", primary_color=None)
        with patch("rideswith.web.api.fetch_brand_assets", return_value=fresh) as fetch:
            resp = client.put(f"/api/communities/{brand['slug']}",
                              json={"refreshBranding": True, "name": "Ignored"})
        fetch.assert_called_once_with("straede.com")
        updated = resp.get_json()
        assert updated["logo"] == "https://cdn.brandfetch.io/new.png"
        assert updated["primaryColor"] == "#123456"
        assert updated["name"] == "Straede Cycling"

    def test_update_rejects_team_and_bad_domain(self, client, login, user):
        brand = _community(client, login, user).get_json()
        url = f"/api/communities/{brand['slug']}"
        assert client.put(url, json={"type": "TEAM"}).get_json()["type"] == "BRAND"
        resp = client.put(url, json={"domain": "not a domain"})
        assert resp.get_json()["error"] == "Invalid domain format"

    def test_update_rejects_foreign_images(self, client, login, user):
        brand = _community(client, login, user).get_json()
        url = f"/api/communities/{brand['slug']}"
        resp = client.put(url, json={"logo": "https://evil.com/logo.png"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Image host not allowed"
        resp = client.put(url, json={"backdrop": "https://images.unsplash.com/b.jpg"})
        assert resp.get_json()["backdrop"] == "https://images.unsplash.com/b.jpg"

    def test_delete(self, client, login, user, other_user):
        brand = _community(client, login, user).get_json()
        url = f"/api/communities/{brand['slug']}"
        login(other_user)
        assert client.delete(url).get_json()["error"] == "You don't have permission to delete this brand"
        login(user)
        assert client.delete(url).get_json() == {"success": True}
        assert client.get(url).status_code == 404


class TestChapters:
    def test_create_validation(self, client, login, user):
        login(user)
        assert client.post("/api/chapters", json={}).get_json()["error"] == "Brand ID is required"
        resp = client.post("/api/chapters", json={"brandId": "b", "name": "X", "city": "Berlin"})
        assert resp.get_json()["error"] == "Chapter name must be at least 2 characters"
        resp = client.post("/api/chapters", json={"brandId": "b", "name": "Crew", "city": "B"})
        assert resp.get_json()["error"] == "City must be at least 2 characters"
        resp = client.post("/api/chapters", json={"brandId": "b", "name": "Crew", "city": "Berlin"})
        assert resp.status_code == 404

    def test_one_chapter_per_city(self, client, login, user):
        brand = _community(client, login, user).get_json()
        assert _chapter(client, login, user, brand["id"]).status_code == 201
        resp = _chapter(client, login, user, brand["id"])
        assert resp.get_json()["error"] == "A chapter already exists for this city"

    def test_list_filtered_by_brand(self, client, login, user):
        a = _community(client, login, user, name="Alpha").get_json()
        b = _community(client, login, user, name="Beta").get_json()
        _chapter(client, login, user, a["id"], "Berlin")
        _chapter(client, login, user, b["id"], "Munich")
        chapters = client.get("/api/chapters?brand=beta").get_json()
        assert [c["city"] for c in chapters] == ["Munich"]
        assert chapters[0]["brand"]["slug"] == "beta"

    def test_get_detail(self, client, login, user):
        brand = _community(client, login, user).get_json()
        chapter = _chapter(client, login, user, brand["id"]).get_json()
        detail = client.get(f"/api/chapters/{chapter['id']}?includePastRides=true").get_json()
        assert detail["brand"]["slug"] == brand["slug"]
        assert detail["rides"] == []
        assert detail["pastRides"] == []
        assert client.get("/api/chapters/missing").status_code == 404

    def test_update_settings(self, client, login, user, other_user):
        brand = _community(client, login, user).get_json()
        chapter = _chapter(client, login, user, brand["id"]).get_json()
        url = f"/api/chapters/{chapter['id']}"

        updated = client.put(url, json={"name": "Berlin North", "customColors": {"primary": "#000"}}).get_json()
        assert updated["name"] == "Berlin North"
        assert updated["customColors"] == {"primary": "#000"}
        resp = client.put(url, json={"customLogo": "https://evil.com/x.png"})
        assert resp.get_json()["error"] == "Image host not allowed"

        login(other_user)
        resp = client.put(url, json={"name": "Taken"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Only owners and admins can update chapter settings"


class TestChapterMembers:
    @pytest.fixture
    def chapter(self, client, login, user):
        brand = _community(client, login, user).get_json()
        return _chapter(client, login, user, brand["id"]).get_json()

    def test_add_member(self, client, login, user, other_user, chapter):
        login(user)
        url = f"/api/chapters/{chapter['id']}"
        resp = client.post(url, json={"userId": other_user["id"]})
        assert resp.status_code == 201
        assert resp.get_json()["role"] == "MODERATOR"
        resp = client.post(url, json={"userId": other_user["id"]})
        assert resp.get_json()["error"] == "User is already a member of this chapter"

    def test_add_requires_admin(self, client, login, other_user, chapter, db):
        third = db.create_user("third@example.com")
        login(other_user)
        resp = client.post(f"/api/chapters/{chapter['id']}", json={"userId": third["id"]})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Only owners and admins can add members"

    def test_admin_can_only_add_moderators(self, client, login, user, other_user, chapter, db):
        db.add_chapter_member(chapter["id"], other_user["id"], "ADMIN")
        third = db.create_user("third@example.com")
        login(other_user)
        url = f"/api/chapters/{chapter['id']}"
        resp = client.post(url, json={"userId": third["id"], "role": "ADMIN"})
        assert resp.get_json()["error"] == "Admins can only add moderators"
        assert client.post(url, json={"userId": third["id"], "role": "MODERATOR"}).status_code == 201

    def test_invalid_role(self, client, login, user, other_user, chapter):
        login(user)
        resp = client.post(f"/api/chapters/{chapter['id']}", json={"userId": other_user["id"], "role": "KING"})
        assert resp.get_json()["error"] == "Invalid role"

    def test_cannot_remove_last_owner(self, client, login, user, chapter):
        login(user)
        resp = client.delete(f"/api/chapters/{chapter['id']}?userId={user['id']}")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Cannot remove the last owner. Transfer ownership first."

    def test_admin_cannot_remove_admin(self, client, login, user, other_user, chapter, db):
        db.add_chapter_member(chapter["id"], other_user["id"], "ADMIN")
        login(other_user)
        resp = client.delete(f"/api/chapters/{chapter['id']}?userId={user['id']}")
        assert resp.status_code == 400

        third = db.create_user("third@example.com")
        db.add_chapter_member(chapter["id"], third["id"], "ADMIN")
        resp = client.delete(f"/api/chapters/{chapter['id']}?userId={third['id']}")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Admins can only remove moderators"

    def test_member_can_leave(self, client, login, other_user, chapter, db):
        db.add_chapter_member(chapter["id"], other_user["id"], "MODERATOR")
        login(other_user)
        resp = client.delete(f"/api/chapters/{chapter['id']}?userId={other_user['id']}")
        assert resp.get_json() == {"success": True}
        assert db.get_chapter_member(chapter["id"], other_user["id"]) is None

    def test_change_role(self, client, login, user, other_user, chapter, db):
        db.add_chapter_member(chapter["id"], other_user["id"], "MODERATOR")
        login(user)
        url = f"/api/chapters/{chapter['id']}"
        resp = client.patch(url, json={"userId": other_user["id"], "role": "ADMIN"})
        assert resp.get_json()["role"] == "ADMIN"

        resp = client.patch(url, json={"userId": user["id"], "role": "ADMIN"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Cannot demote the last owner"

        login(other_user)
        resp = client.patch(url, json={"userId": other_user["id"], "role": "OWNER"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Only owners can promote to admin or owner"

    def test_change_role_validation(self, client, login, user, chapter):
        login(user)
        url = f"/api/chapters/{chapter['id']}"
        assert client.patch(url, json={}).get_json()["error"] == "User ID and role are required"
        resp = client.patch(url, json={"userId": "nobody", "role": "MODERATOR"})
        assert resp.status_code == 404


class TestPlatformAdmin:
    def test_requires_platform_admin(self, client, login, user):
        login(user)
        resp = client.get("/api/admin/communities")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "You do not have permission to access this resource"

    def test_list_and_toggle_sponsors(self, client, login, user, admin):
        brand = _community(client, login, user).get_json()
        login(admin)
        communities = client.get("/api/admin/communities").get_json()["communities"]
        assert communities[0]["createdBy"]["email"] == "rider@example.com"
        assert communities[0]["sponsorsEnabled"] is False

        resp = client.patch(f"/api/admin/communities/{brand['id']}", json={"sponsorsEnabled": True})
        assert resp.get_json()["sponsorsEnabled"] is True
        resp = client.patch(f"/api/admin/communities/{brand['id']}", json={"sponsorsEnabled": "yes"})
        assert resp.get_json()["error"] == "No valid fields to update"
        resp = client.patch("/api/admin/communities/missing", json={"sponsorsEnabled": True})
        assert resp.status_code == 404

    def test_analytics(self, client, login, user, admin):
        brand = _community(client, login, user).get_json()
        _chapter(client, login, user, brand["id"])
        client.post("/api/rides", json={
            "title": "Loop", "date": "2099-01-01T09:00:00Z", "locationName": "Park",
            "locationAddress": "1 Park Rd", "latitude": 52.5, "longitude": 13.4, "pace": "FAST",
        })
        login(admin)
        data = client.get("/api/admin/analytics").get_json()
        overview = data["overview"]
        assert overview["totalUsers"] == 2
        assert overview["totalCommunities"] == 1
        assert overview["totalChapters"] == 1
        assert overview["totalRides"] == 1
        assert overview["upcomingRides"] == 1
        assert overview["totalRsvps"] == 1
        assert data["topCommunities"][0]["chapterCount"] == 1
        assert sum(m["count"] for m in data["ridesByMonth"]) == 1
