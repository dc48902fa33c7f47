from __future__ import annotations

import pytest

from conftest import add_wish, sign_up
from errors import BackendRejected
from extensions import db
from models import StarChainWish, Wish
from wishes.service import create_wish, delete_wish, list_wishes, update_wish


def test_wish_routes_require_sign_in(client) -> None:
    resp = client.get("/api/wishes")
    assert resp.status_code == 401
    body = resp.get_json()
    assert body["error"] == "not_authenticated"
    assert body["action"] == "sign_in"


def test_create_list_update_delete_wish(client) -> None:
    sign_up(client)
    created = add_wish(
        client,
        "  Telescope  ",
        description="<b>For</b> the balcony",
        category="gift",
        priority="high",
        tags=["stars", " stars ", "", "night"],
    )
    assert created["title"] == "Telescope"
    assert created["description"] == "For the balcony"
    assert created["tags"] == ["stars", "night"]

    listing = client.get("/api/wishes").get_json()
    assert listing["total"] == 1
    assert [wish["id"] for wish in listing["wishes"]] == [created["id"]]
    assert listing["summary"]["categories"]["gift"] == 1

    updated = client.patch(f"/api/wishes/{created['id']}", json={"priority": "low", "notes": "any brand"})
    assert updated.status_code == 200
    body = updated.get_json()
    assert body["priority"] == "low"
    assert body["notes"] == "any brand"
    assert body["title"] == "Telescope"
    assert body["tags"] == ["stars", "night"]

    first = client.delete(f"/api/wishes/{created['id']}")
    assert first.get_json() == {"status": "ok", "deleted": True, "id": created["id"]}
    second = client.delete(f"/api/wishes/{created['id']}")
    assert second.status_code == 200
    assert second.get_json()["deleted"] is False


def test_blank_title_is_rejected_without_writing(app, client) -> None:
    sign_up(client)
    resp = client.post("/api/wishes", json={"title": "   "}, headers={"Accept-Language": "en"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["fields"]["title"] == "wish.titleRequired"
    assert body["message"] == "A wish needs a title."
    assert body["action"] == "fix_input"

    with app.app_context():
        assert Wish.query.count() == 0


def test_invalid_category_and_unknown_wish(client) -> None:
    sign_up(client)
    resp = client.post("/api/wishes", json={"title": "Pony", "category": "animal"})
    assert resp.status_code == 400
    assert resp.get_json()["fields"] == {"category": "invalid_choice"}

    missing = client.patch("/api/wishes/does-not-exist", json={"title": "New"})
    assert missing.status_code == 404

    wish = add_wish(client, "Kite")
    blank = client.patch(f"/api/wishes/{wish['id']}", json={"title": ""})
    assert blank.status_code == 400


def test_list_filters_and_sorts_through_query_string(client) -> None:
    sign_up(client)
    add_wish(client, "Telescope", category="gift", priority="high", tags=["stars"])
    add_wish(client, "Aurora trip", category="experience", priority="medium")
    add_wish(client, "Star map", category="gift", priority="low")

    body = client.get("/api/wishes?category=gift&q=STAR&sort=title_asc").get_json()
    assert [wish["title"] for wish in body["wishes"]] == ["Star map", "Telescope"]
    assert body["total"] == 3

    bad = client.get("/api/wishes?sort=shuffle")
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "invalid_sort"


def test_wishes_are_scoped_to_their_owner(app) -> None:
    owner = app.test_client()
    other = app.test_client()
    sign_up(owner, email="owner@example.com", fingerprint="fp-owner")
    sign_up(other, email="other@example.com", fingerprint="fp-other")
    wish = add_wish(owner, "Private wish")

    assert other.get("/api/wishes").get_json()["wishes"] == []
    assert other.patch(f"/api/wishes/{wish['id']}", json={"title": "Stolen"}).status_code == 404
    assert other.delete(f"/api/wishes/{wish['id']}").get_json()["deleted"] is False
    assert owner.get("/api/wishes").get_json()["total"] == 1


def test_deleting_a_wish_removes_its_chain_memberships(app, client) -> None:
    sign_up(client)
    keep = add_wish(client, "Keep")
    drop = add_wish(client, "Drop")
    chain = client.post("/api/chains", json={"wish_ids": [keep["id"], drop["id"]]}).get_json()

    client.delete(f"/api/wishes/{drop['id']}")

    with app.app_context():
        members = {row.wish_id for row in db.session.query(StarChainWish).filter_by(chain_id=chain["id"])}
    assert members == {keep["id"]}


def test_supabase_path_uses_the_wishes_table(supabase_app, fake_supabase) -> None:
    with supabase_app.app_context():
        wish = create_wish("owner-1", {"title": "Camera", "priority": "high"})
        assert fake_supabase.tables["wishes"][0]["user_id"] == "owner-1"

        updated = update_wish("owner-1", wish["id"], {"notes": "mirrorless"})
        assert updated["notes"] == "mirrorless"
        assert updated["title"] == "Camera"

        assert [row["id"] for row in list_wishes("owner-1")] == [wish["id"]]
        assert list_wishes("owner-2") == []

        assert delete_wish("owner-1", wish["id"]) is True
        assert delete_wish("owner-1", wish["id"]) is False


def test_supabase_rejection_surfaces_as_backend_error(supabase_app, fake_supabase) -> None:
    fake_supabase.fail_next("wishes", "insert", message="permission denied")
    with supabase_app.app_context():
        with pytest.raises(BackendRejected):
            create_wish("owner-1", {"title": "Camera"})
    assert fake_supabase.tables.get("wishes", []) == []
