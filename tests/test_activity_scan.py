"""Scan pipeline, persistence and the /api/activity endpoints.

The indexer is a FakeIndexer from conftest; nothing here touches the network.
"""

from __future__ import annotations

from conftest import WALLET, FakeIndexer, transfer

from activity import (
    Activity,
    ActivityScanner,
    NftNameCache,
    add_user_activity,
    get_combined_points,
    get_leaderboard,
    get_stored_activities,
)
from extensions import db
from models_activity import UserActivityRecord, WalletActivity
from models_quests import Quest


def _scanner(indexer):
    return ActivityScanner(indexer, NftNameCache(8))


def test_first_scan_from_genesis_persists_and_scores(app_ctx):
    indexer = FakeIndexer(
        block=500,
        outbound=[transfer("0xaa", category="erc20", asset="USDC", block=10)],
        inbound=[transfer("0xbb", category="external", to=None, block=20)],
    )
    result = _scanner(indexer).scan(WALLET)

    assert result.scanned is True
    assert result.last_scanned_block == 500
    assert {c[2] for c in indexer.transfer_calls} == {0}

    record = db.session.get(UserActivityRecord, WALLET)
    assert record.is_initial_scan_complete is True
    assert record.last_scanned_block == 500
    assert record.total_points == 10 + 35
    assert record.combined_points == 45
    assert record.level == "Newbie"

    stored = get_stored_activities(WALLET)
    assert [a.hash for a in stored] == ["0xbb", "0xaa"]
    assert stored[0].direction == "inbound"
    assert stored[0].timestamp == 20 * 1000


def test_rescan_is_idempotent_and_incremental(app_ctx):
    indexer = FakeIndexer(block=500, outbound=[transfer("0xaa", category="erc20")])
    scanner = _scanner(indexer)
    scanner.scan(WALLET)

    # Same height: nothing to do.
    assert scanner.scan(WALLET).scanned is False

    # New blocks, indexer returns the same transfer again.
    indexer.block = 600
    indexer.transfer_calls.clear()
    result = scanner.scan(WALLET)
    assert result.scanned is True
    assert {c[2] for c in indexer.transfer_calls} == {501}
    assert WalletActivity.query.filter_by(address=WALLET).count() == 1
    record = db.session.get(UserActivityRecord, WALLET)
    assert record.total_points == 10
    assert record.last_scanned_block == 600


def test_empty_scan_still_advances_block(app_ctx):
    indexer = FakeIndexer(block=42)
    result = _scanner(indexer).scan(WALLET)
    assert result.scanned is True
    record = db.session.get(UserActivityRecord, WALLET)
    assert record.last_scanned_block == 42
    assert record.total_points == 0


def test_block_height_failure_writes_nothing(app_ctx):
    indexer = FakeIndexer()
    indexer.block_error = RuntimeError("rpc down")
    result = _scanner(indexer).scan(WALLET)
    assert result.scanned is False
    assert db.session.get(UserActivityRecord, WALLET) is None
    assert indexer.transfer_calls == []


def test_one_direction_failing_degrades_to_empty(app_ctx):
    indexer = FakeIndexer(inbound=[transfer("0xcc")], outbound=[transfer("0xdd")])
    indexer.fail_direction = "outbound"
    _scanner(indexer).scan(WALLET)
    assert [a.hash for a in get_stored_activities(WALLET)] == ["0xcc"]


def test_nft_names_resolved_and_cached(app_ctx):
    contract = "0x" + "99" * 20
    indexer = FakeIndexer(
        inbound=[
            transfer("0x01", category="erc721", asset="X", contract=contract, tokenId="0x1"),
            transfer("0x02", category="erc721", asset="X", contract=contract, tokenId="0x2"),
            transfer("0x03", category="erc1155", contract="0x03c4738ee98ae44591e1a4a4f3cab6641d95dd9a"),
        ],
        names={contract: "Cool Cats"},
    )
    _scanner(indexer).scan(WALLET)

    descriptions = {a.hash: a.description for a in get_stored_activities(WALLET)}
    assert descriptions == {"0x01": "Cool Cats", "0x02": "Cool Cats", "0x03": "Basenames"}
    assert indexer.name_calls == [contract]


def test_manual_insert_collapses_duplicates(app_ctx):
    a = Activity(id="0xee-1", type="swap", description="", timestamp=1, points=30, hash="0xEE", direction="outbound")
    add_user_activity(WALLET, a)
    add_user_activity(WALLET, a)
    assert WalletActivity.query.filter_by(address=WALLET).count() == 1
    assert get_combined_points(WALLET)["activity_points"] == 30
    assert db.session.get(UserActivityRecord, WALLET).is_initial_scan_complete is False


def test_leaderboard_ranks_by_combined_points(app_ctx):
    add_user_activity(WALLET, Activity("1", "mint", "", 1, 35, "0x1", "outbound"))
    other = "0x" + "12" * 20
    add_user_activity(other, Activity("2", "swap", "", 1, 30, "0x2", "outbound"))
    add_user_activity(other, Activity("3", "swap", "", 2, 30, "0x3", "outbound"))

    board = get_leaderboard(10)
    assert [(e["rank"], e["address"], e["points"]) for e in board] == [(1, other, 60), (2, WALLET, 35)]
    assert board[0]["activities"] == 2


def test_get_activity_endpoint_scans_and_filters(client, fake_indexer):
    fake_indexer.inbound = [transfer("0xa1")]
    fake_indexer.outbound = [transfer("0xa2", category="erc20"), transfer("0xa3", category="erc20")]

    resp = client.get(f"/api/activity?address={WALLET.upper().replace('0X', '0x')}&direction=outbound")
    data = resp.get_json()
    assert resp.status_code == 200
    assert data["scanned"] is True
    assert data["inbound_count"] == 1
    assert data["outbound_count"] == 2
    assert len(data["activities"]) == 2
    assert data["activity_points"] == 15 + 10 + 10
    assert data["total_points"] == 35
    assert data["is_initial_scan_complete"] is True


def test_get_activity_rejects_bad_address(client):
    resp = client.get("/api/activity?address=nope")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_post_activity_refreshes_activity_quests(client):
    quest = Quest(title="First steps", description="Do 1 thing", type="activity_based",
                  requirements={"activity_count": 1}, reward_points=50)
    db.session.add(quest)
    db.session.commit()

    resp = client.post("/api/activity", json={"address": WALLET, "type": "mint", "hash": "0xf1", "timestamp": 5})
    assert resp.status_code == 200
    assert resp.get_json()["activity"]["id"] == "0xf1-5"

    points = get_combined_points(WALLET)
    assert points["activity_points"] == 35
    assert points["quest_points"] == 50
    assert points["total_points"] == 85
    assert db.session.get(UserActivityRecord, WALLET).combined_points == 85


def test_post_activity_requires_fields(client):
    resp = client.post("/api/activity", json={"address": WALLET, "type": "mint"})
    assert resp.status_code == 400


def test_post_activity_rejects_unknown_type(client):
    resp = client.post("/api/activity", json={"address": WALLET, "type": "bogus", "hash": "0xf2", "timestamp": 5})
    assert resp.status_code == 400
    assert WalletActivity.query.count() == 0
    assert db.session.get(UserActivityRecord, WALLET) is None
