from __future__ import annotations

import pytest

from chains.tracker import ShareStatusTracker, tracker_for
from conftest import add_wish, sign_up
from errors import NotFound, ValidationError
from extensions import chain_opened


def _row(chain_id="chain-1", opened=False, updated_at="2025-03-01T10:00:00+00:00", creator_id="owner-1"):
    return {
        "id": chain_id,
        "creator_id": creator_id,
        "share_code": "ABCD1234",
        "is_opened": opened,
        "created_at": "2025-03-01T09:00:00+00:00",
        "updated_at": updated_at,
    }


def test_apply_keeps_the_newest_row() -> None:
    tracker = ShareStatusTracker("owner-1")
    assert tracker.apply(_row(updated_at="2025-03-01T10:00:00+00:00")) is True
    assert tracker.apply(_row(opened=True, updated_at="2025-03-01T11:00:00+00:00")) is True
    # A stale poll result arriving late does not roll the chain back.
    assert tracker.apply(_row(opened=False, updated_at="2025-03-01T10:30:00+00:00")) is False
    assert tracker.chains("opened")[0]["id"] == "chain-1"


def test_opened_never_reverts_even_with_a_newer_stamp() -> None:
    tracker = ShareStatusTracker("owner-1")
    tracker.apply(_row(opened=True, updated_at="2025-03-01T11:00:00+00:00"))
    assert tracker.apply(_row(opened=False, updated_at="2025-03-02T11:00:00+00:00")) is False
    assert tracker.counts() == {"all": 1, "opened": 1, "unopened": 0}


def test_rows_of_other_creators_are_ignored() -> None:
    tracker = ShareStatusTracker("owner-1")
    assert tracker.apply(_row(creator_id="owner-2")) is False
    assert tracker.apply(None) is False
    assert tracker.counts()["all"] == 0


def test_duplicate_delivery_is_a_no_op() -> None:
    tracker = ShareStatusTracker("owner-1")
    row = _row(opened=True)
    assert tracker.apply(row) is True
    assert tracker.apply(dict(row)) is False


def test_push_signal_and_close() -> None:
    tracker = ShareStatusTracker("owner-1").connect()
    tracker.apply(_row())

    chain_opened.send(object(), chain=_row(opened=True, updated_at="2025-03-01T12:00:00+00:00"))
    assert tracker.counts()["opened"] == 1

    tracker.close()
    chain_opened.send(object(), chain=_row("chain-2", opened=True))
    assert tracker.apply(_row("chain-3")) is False
    assert tracker.counts()["all"] == 1


def test_unknown_status_filter_is_rejected() -> None:
    with pytest.raises(ValidationError):
        ShareStatusTracker("owner-1").chains("archived")


def test_open_is_pushed_to_the_creator_tracker(app) -> None:
    creator = app.test_client()
    account = sign_up(creator, email="creator@example.com", fingerprint="fp-creator")
    wish = add_wish(creator, "Telescope")
    chain = creator.post("/api/chains", json={"wish_ids": [wish["id"]]}).get_json()

    with app.app_context():
        tracker = tracker_for(account["user_id"])
    assert tracker.counts() == {"all": 1, "opened": 0, "unopened": 1}

    app.test_client().post(f"/api/box/{chain['share_code']}/open", headers={"X-Fingerprint": "fp-guest"})
    # No refresh: the open reached the tracker through the signal.
    assert tracker.counts() == {"all": 1, "opened": 1, "unopened": 0}

    body = creator.get("/api/chains?status=opened").get_json()
    assert [row["id"] for row in body["chains"]] == [chain["id"]]
    assert body["chains"][0]["opener_fingerprint"] == "fp-guest"


def test_refresh_one_reports_missing_chains(app) -> None:
    creator = app.test_client()
    account = sign_up(creator, email="creator@example.com", fingerprint="fp-creator")

    assert creator.post("/api/chains/missing/refresh").status_code == 404
    with app.app_context():
        with pytest.raises(NotFound):
            tracker_for(account["user_id"]).refresh_one("missing")


def test_refresh_endpoint_reports_counts(app) -> None:
    creator = app.test_client()
    sign_up(creator, email="creator@example.com", fingerprint="fp-creator")
    wish = add_wish(creator, "Kite")
    chain = creator.post("/api/chains", json={"wish_ids": [wish["id"]]}).get_json()

    body = creator.post("/api/chains/refresh").get_json()
    assert body["counts"] == {"all": 1, "opened": 0, "unopened": 1}

    single = creator.post(f"/api/chains/{chain['id']}/refresh").get_json()
    assert single["chain"]["share_code"] == chain["share_code"]


def test_registry_evicts_the_least_recently_used_tracker(app) -> None:
    app.config["SHARE_TRACKER_LIMIT"] = 2
    with app.app_context():
        first = tracker_for("owner-1")
        second = tracker_for("owner-2")
        assert tracker_for("owner-1") is first

        third = tracker_for("owner-3")

        # owner-2 was the least recently used and is closed on eviction.
        assert second.apply(_row(creator_id="owner-2")) is False
        assert first.apply(_row(creator_id="owner-1")) is True
        assert third.apply(_row(creator_id="owner-3")) is True
        assert tracker_for("owner-2") is not second
