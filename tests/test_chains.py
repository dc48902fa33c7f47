from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from chains.service import (
    SHARE_CODE_ALPHABET,
    SHARE_CODE_LENGTH,
    build_chain,
    build_share_url,
    generate_share_code,
    get_chain_members,
    normalize_share_code,
)
from conftest import add_wish, sign_up
from errors import BackendRejected, ValidationError
from models import StarChain


def test_share_codes_use_the_fixed_alphabet() -> None:
    for _ in range(50):
        code = generate_share_code()
        assert len(code) == SHARE_CODE_LENGTH
        assert set(code) <= set(SHARE_CODE_ALPHABET)


def test_normalize_share_code() -> None:
    assert normalize_share_code(" abcd1234 ") == "ABCD1234"
    assert normalize_share_code("ABC") is None
    assert normalize_share_code("ABCD-123") is None
    assert normalize_share_code(None) is None


def test_share_url_points_at_the_box_query_parameter() -> None:
    assert build_share_url("https://starwish.test/", "ABCD1234") == "https://starwish.test/?box=ABCD1234"


def test_chain_creation_requires_sign_in(client) -> None:
    resp = client.post("/api/chains", json={"wish_ids": ["anything"]})
    assert resp.status_code == 401


def test_build_chain_membership_matches_selection(app, client) -> None:
    user = sign_up(client)
    first = add_wish(client, "Telescope")
    second = add_wish(client, "Kite")
    add_wish(client, "Not selected")

    resp = client.post(
        "/api/chains",
        json={
            "wish_ids": [first["id"], second["id"], first["id"]],
            "name": "Birthday <i>box</i>",
            "description": "Pick one",
        },
    )
    assert resp.status_code == 201
    chain = resp.get_json()

    assert chain["creator_id"] == user["user_id"]
    assert chain["name"] == "Birthday box"
    assert chain["is_active"] is True
    assert chain["is_opened"] is False
    assert chain["share_url"] == f"https://starwish.test/?box={chain['share_code']}"
    assert chain["wish_ids"] == [first["id"], second["id"]]

    with app.app_context():
        assert set(get_chain_members(chain["id"])) == {first["id"], second["id"]}

    detail = client.get(f"/api/chains/{chain['id']}").get_json()
    assert {wish["id"] for wish in detail["wishes"]} == {first["id"], second["id"]}


def test_empty_selection_is_rejected_before_any_write(app, client) -> None:
    sign_up(client)
    resp = client.post("/api/chains", json={"wish_ids": []}, headers={"Accept-Language": "en"})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "empty_selection"
    assert body["message"] == "Select at least one wish to build a star chain."

    with app.app_context():
        assert StarChain.query.count() == 0


def test_foreign_wishes_are_rejected(app) -> None:
    owner = app.test_client()
    intruder = app.test_client()
    sign_up(owner, email="owner@example.com", fingerprint="fp-owner")
    sign_up(intruder, email="intruder@example.com", fingerprint="fp-intruder")
    wish = add_wish(owner, "Mine")

    resp = intruder.post("/api/chains", json={"wish_ids": [wish["id"]]})
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["error"] == "foreign_wishes"
    assert body["wish_ids"] == [wish["id"]]


def test_expiry_must_be_in_the_future(client) -> None:
    sign_up(client)
    wish = add_wish(client, "Kite")
    past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
    resp = client.post("/api/chains", json={"wish_ids": [wish["id"]], "expires_at": past})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "expiry_in_past"

    garbled = client.post("/api/chains", json={"wish_ids": [wish["id"]], "expires_at": "next week"})
    assert garbled.status_code == 400
    assert garbled.get_json()["error"] == "invalid_expiry"


def test_chain_listing_filters_by_status(client) -> None:
    sign_up(client)
    wish = add_wish(client, "Kite")
    client.post("/api/chains", json={"wish_ids": [wish["id"]]})
    client.post("/api/chains", json={"wish_ids": [wish["id"]]})

    body = client.get("/api/chains").get_json()
    assert body["counts"] == {"all": 2, "opened": 0, "unopened": 2}
    assert len(body["chains"]) == 2
    assert all(chain["wishes"][0]["id"] == wish["id"] for chain in body["chains"])

    assert client.get("/api/chains?status=opened").get_json()["chains"] == []
    assert client.get("/api/chains?status=bogus").status_code == 400


def test_supabase_build_chain_writes_chain_and_members(supabase_app, fake_supabase) -> None:
    first = fake_supabase.add_row("wishes", {"user_id": "owner-1", "title": "Telescope"})
    second = fake_supabase.add_row("wishes", {"user_id": "owner-1", "title": "Kite"})

    with supabase_app.app_context():
        chain = build_chain("owner-1", [first["id"], second["id"]], origin="https://starwish.test")
        assert set(get_chain_members(chain["id"])) == {first["id"], second["id"]}

    stored = fake_supabase.tables["star_chains"]
    assert len(stored) == 1
    assert stored[0]["is_opened"] is False
    assert stored[0]["share_code"] == chain["share_code"]


def test_supabase_membership_failure_removes_the_chain(supabase_app, fake_supabase) -> None:
    wish = fake_supabase.add_row("wishes", {"user_id": "owner-1", "title": "Telescope"})
    fake_supabase.fail_next("star_chain_wishes", "insert", message="insert failed")

    with supabase_app.app_context():
        with pytest.raises(BackendRejected):
            build_chain("owner-1", [wish["id"]], origin="https://starwish.test")

    assert fake_supabase.tables.get("star_chains", []) == []
    assert fake_supabase.tables.get("star_chain_wishes", []) == []


def test_supabase_share_code_collision_is_retried(supabase_app, fake_supabase) -> None:
    wish = fake_supabase.add_row("wishes", {"user_id": "owner-1", "title": "Telescope"})
    fake_supabase.fail_next(
        "star_chains",
        "insert",
        message='duplicate key value violates unique constraint "star_chains_share_code_key"',
        code="23505",
    )

    with supabase_app.app_context():
        chain = build_chain("owner-1", [wish["id"]], origin="https://starwish.test")

    assert [row["id"] for row in fake_supabase.tables["star_chains"]] == [chain["id"]]


def test_supabase_empty_selection_makes_no_backend_call(supabase_app, fake_supabase) -> None:
    with supabase_app.app_context():
        with pytest.raises(ValidationError):
            build_chain("owner-1", ["", "  "], origin="https://starwish.test")
    assert fake_supabase.tables == {}
