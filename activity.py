"""Wallet activity: classification, scanning and the stored history.

A scan pulls the wallet's inbound and outbound transfers from the indexer,
turns each into a scored Activity, merges the result into the stored history
(deduplicated, newest first, capped) and refreshes the record's aggregates.
"""

from __future__ import annotations

import os
import re
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from chain import DIRECTION_INBOUND, DIRECTION_OUTBOUND, AlchemyClient
from extensions import db
from models_activity import UserActivityRecord, WalletActivity
from models_quests import UserQuestProfile
from points import (
    ACTIVITY_CONTRACT_INTERACTION,
    ACTIVITY_MINT,
    ACTIVITY_NFT_TRANSFER,
    ACTIVITY_STAKE,
    ACTIVITY_SWAP,
    ACTIVITY_TOKEN_TRANSFER,
    compute_level,
    compute_rank_tier,
    points_for,
)


ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

MAX_STORED_ACTIVITIES = 100

DEX_NAME_MARKERS = ("uniswap", "sushiswap", "pancakeswap")
UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
STAKING_NAME_MARKERS = ("stake", "validator")
BEACON_DEPOSIT_CONTRACT = "0x00000000219ab540356cbb839cbe05303d7705fa"

# Collections we name locally without asking the indexer.
NFT_COLLECTION_NAMES = {
    "0xe3eb165c9ed6d6d87a59c410c8f30babac44fefd": "BetaAccess",
    "0x03c4738ee98ae44591e1a4a4f3cab6641d95dd9a": "Basenames",
}


def normalize_address(address: str) -> str | None:
    address = (address or "").strip()
    if not ADDRESS_RE.match(address):
        return None
    return address.lower()


# -------------------------------
# Classification
# -------------------------------
@dataclass(frozen=True)
class Activity:
    id: str
    type: str
    description: str
    timestamp: int  # ms
    points: int
    hash: str
    direction: str
    asset: str | None = None
    token_id: str | None = None

    @property
    def dedupe_key(self) -> str:
        h = (self.hash or "").lower()
        if self.type == ACTIVITY_NFT_TRANSFER:
            return f"{h}:{self.direction}:{self.asset or ''}:{self.token_id or ''}"
        return f"{h}:{self.direction}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "timestamp": self.timestamp,
            "points": self.points,
            "hash": self.hash,
            "direction": self.direction,
            "asset": self.asset,
            "token_id": self.token_id,
        }


def classify_transfer(transfer: dict) -> str:
    category = transfer.get("category")
    to_addr = transfer.get("to")
    dest = (to_addr or "").lower()

    if category in ("erc721", "erc1155"):
        return ACTIVITY_NFT_TRANSFER

    if category == "erc20":
        if any(m in dest for m in DEX_NAME_MARKERS) or dest == UNISWAP_V2_ROUTER:
            return ACTIVITY_SWAP
        return ACTIVITY_TOKEN_TRANSFER

    if category in ("external", "internal"):
        if any(m in dest for m in STAKING_NAME_MARKERS) or dest == BEACON_DEPOSIT_CONTRACT:
            return ACTIVITY_STAKE
        if to_addr is None:
            return ACTIVITY_MINT
        return ACTIVITY_CONTRACT_INTERACTION

    return ACTIVITY_CONTRACT_INTERACTION


def capitalize(text: str) -> str:
    if not text:
        return text
    return text[0].upper() + text[1:].lower()


def describe_transfer(transfer: dict, activity_type: str) -> str:
    asset = transfer.get("asset")
    if activity_type == ACTIVITY_TOKEN_TRANSFER:
        text = asset or "tokens"
    elif activity_type == ACTIVITY_NFT_TRANSFER:
        text = asset or "NFT"
    elif activity_type == ACTIVITY_SWAP:
        text = "tokens via DEX"
    elif activity_type == ACTIVITY_STAKE:
        text = "tokens to staking"
    elif activity_type == ACTIVITY_MINT:
        text = "new token/NFT"
    elif activity_type == ACTIVITY_CONTRACT_INTERACTION:
        text = "smart contract"
    else:
        text = "transaction"
    return capitalize(text)


def _transfer_timestamp_ms(transfer: dict) -> int:
    block_ts = (transfer.get("metadata") or {}).get("blockTimestamp")
    if block_ts:
        try:
            return int(datetime.fromisoformat(block_ts.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            pass
    block_num = transfer.get("blockNum")
    return int(block_num, 16) * 1000 if block_num else 0


def _transfer_token_id(transfer: dict) -> str | None:
    return transfer.get("tokenId") or transfer.get("erc721TokenId")


def _transfer_contract(transfer: dict) -> str:
    return ((transfer.get("rawContract") or {}).get("address") or "").lower()


class NftNameCache:
    """Bounded LRU of contract address -> collection name."""

    def __init__(self, max_size: int = 512):
        self.max_size = max(1, int(max_size))
        self._items: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, contract: str) -> str | None:
        with self._lock:
            name = self._items.get(contract)
            if name is not None:
                self._items.move_to_end(contract)
            return name

    def put(self, contract: str, name: str) -> None:
        with self._lock:
            self._items[contract] = name
            self._items.move_to_end(contract)
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def merge_activities(new: list[Activity], existing: list[Activity], cap: int = MAX_STORED_ACTIVITIES) -> list[Activity]:
    seen = set()
    merged = []
    for a in list(new) + list(existing):
        key = a.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        merged.append(a)
    merged.sort(key=lambda a: (-a.timestamp, a.dedupe_key))
    return merged[:cap]


# -------------------------------
# Stored history
# -------------------------------
def _row_to_activity(row: WalletActivity) -> Activity:
    return Activity(
        id=row.activity_id,
        type=row.type,
        description=row.description,
        timestamp=int(row.timestamp),
        points=int(row.points),
        hash=row.hash,
        direction=row.direction,
        asset=row.asset,
        token_id=row.token_id,
    )


def get_stored_activities(address: str) -> list[Activity]:
    rows = (
        WalletActivity.query.filter_by(address=address)
        .order_by(WalletActivity.timestamp.desc(), WalletActivity.dedupe_key.asc())
        .all()
    )
    return [_row_to_activity(r) for r in rows]


def get_quest_points_for(address: str) -> int:
    profile = db.session.get(UserQuestProfile, address)
    return int(profile.total_quest_points or 0) if profile else 0


def refresh_combined_points(record: UserActivityRecord, quest_points: int) -> None:
    """Recompute combined points, level and tier on `record` (no commit)."""
    combined = int(record.total_points or 0) + int(quest_points or 0)
    record.combined_points = combined
    record.level = compute_level(combined)
    record.rank_tier = compute_rank_tier(combined)
    record.last_updated = datetime.utcnow()


def save_activity_record(
    address: str,
    activities: list[Activity],
    last_scanned_block: int | None,
    initial_scan_complete: bool,
) -> UserActivityRecord:
    record = db.session.get(UserActivityRecord, address)
    if record is None:
        record = UserActivityRecord(address=address)
        db.session.add(record)
        db.session.flush()

    # Bulk delete runs immediately, so the re-inserted keys never collide.
    WalletActivity.query.filter_by(address=address).delete(synchronize_session=False)
    for a in activities:
        db.session.add(
            WalletActivity(
                address=address,
                activity_id=a.id,
                dedupe_key=a.dedupe_key,
                type=a.type,
                description=a.description or "",
                timestamp=a.timestamp,
                points=a.points,
                hash=a.hash,
                direction=a.direction,
                asset=a.asset,
                token_id=a.token_id,
            )
        )

    record.total_points = sum(a.points for a in activities)
    if last_scanned_block is not None:
        record.last_scanned_block = last_scanned_block
    record.is_initial_scan_complete = bool(record.is_initial_scan_complete or initial_scan_complete)
    refresh_combined_points(record, get_quest_points_for(address))
    db.session.commit()
    return record


def add_user_activity(address: str, activity: Activity) -> UserActivityRecord:
    record = db.session.get(UserActivityRecord, address)
    existing = get_stored_activities(address) if record else []
    merged = merge_activities([activity], existing)
    return save_activity_record(
        address,
        merged,
        record.last_scanned_block if record else None,
        bool(record.is_initial_scan_complete) if record else False,
    )


def get_combined_points(address: str) -> dict:
    record = db.session.get(UserActivityRecord, address)
    activity_points = int(record.total_points or 0) if record else 0
    quest_points = get_quest_points_for(address)
    total = activity_points + quest_points
    return {
        "activity_points": activity_points,
        "quest_points": quest_points,
        "total_points": total,
        "level": compute_level(total),
        "rank_tier": compute_rank_tier(total),
    }


def get_leaderboard(limit: int = 10) -> list[dict]:
    counts = dict(
        db.session.query(WalletActivity.address, func.count(WalletActivity.id))
        .group_by(WalletActivity.address)
        .all()
    )
    records = (
        UserActivityRecord.query.filter(UserActivityRecord.combined_points > 0)
        .order_by(UserActivityRecord.combined_points.desc(), UserActivityRecord.address.asc())
        .limit(limit)
        .all()
    )
    out = []
    for i, r in enumerate(records, start=1):
        out.append(
            {
                "rank": i,
                "address": r.address,
                "points": int(r.combined_points or 0),
                "level": r.level,
                "rank_tier": r.rank_tier,
                "activities": int(counts.get(r.address, 0)),
                "last_activity": r.last_updated.isoformat() if r.last_updated else None,
            }
        )
    return out


def get_user_rank(address: str) -> dict | None:
    record = db.session.get(UserActivityRecord, address)
    if record is None or not record.combined_points:
        return None
    ahead = UserActivityRecord.query.filter(UserActivityRecord.combined_points > record.combined_points).count()
    return {
        "rank": ahead + 1,
        "address": record.address,
        "points": int(record.combined_points),
        "level": record.level,
        "rank_tier": record.rank_tier,
    }


def get_user_stats() -> dict:
    return {"total_users": UserActivityRecord.query.count()}


# -------------------------------
# Scan pipeline
# -------------------------------
@dataclass
class ScanResult:
    scanned: bool
    new_activities: list[Activity] = field(default_factory=list)
    last_scanned_block: int | None = None


class ActivityScanner:
    def __init__(self, indexer, name_cache: NftNameCache | None = None):
        self.indexer = indexer
        self.name_cache = name_cache if name_cache is not None else NftNameCache()

    def _current_block(self) -> int | None:
        try:
            return self.indexer.get_current_block_number()
        except Exception:
            current_app.logger.warning("block height lookup failed", exc_info=True)
            return None

    def should_scan(self, record: UserActivityRecord | None, force_refresh: bool = False):
        """Return (scan?, current block if it was fetched)."""
        if record is None or force_refresh or not record.is_initial_scan_complete:
            return True, None

        current = self._current_block()
        if current is None:
            return False, None
        if record.last_scanned_block is None or current > record.last_scanned_block:
            return True, current
        return False, current

    def _fetch_direction(self, address: str, direction: str, from_block: int) -> list[dict]:
        try:
            return self.indexer.get_asset_transfers(address, direction, from_block) or []
        except Exception:
            current_app.logger.warning("%s transfer fetch failed for %s", direction, address, exc_info=True)
            return []

    def fetch_transfers(self, address: str, from_block: int = 0) -> tuple[list[dict], list[dict]]:
        """Return (inbound, outbound); the two fetches run concurrently."""
        app = current_app._get_current_object()

        def run(direction):
            with app.app_context():
                return self._fetch_direction(address, direction, from_block)

        with ThreadPoolExecutor(max_workers=2) as pool:
            inbound = pool.submit(run, DIRECTION_INBOUND)
            outbound = pool.submit(run, DIRECTION_OUTBOUND)
            return inbound.result(), outbound.result()

    def resolve_nft_name(self, transfer: dict) -> str | None:
        contract = _transfer_contract(transfer)
        if not contract:
            return None
        if contract in NFT_COLLECTION_NAMES:
            return NFT_COLLECTION_NAMES[contract]
        cached = self.name_cache.get(contract)
        if cached:
            return cached
        try:
            name = self.indexer.get_contract_name(contract)
        except Exception:
            current_app.logger.warning("contract metadata lookup failed for %s", contract, exc_info=True)
            return None
        if name:
            self.name_cache.put(contract, name)
        return name

    def build_activities(self, transfers: list[dict], direction: str) -> list[Activity]:
        out = []
        for t in transfers:
            tx_hash = t.get("hash")
            if not tx_hash:
                continue
            activity_type = classify_transfer(t)
            description = describe_transfer(t, activity_type)
            if activity_type == ACTIVITY_NFT_TRANSFER:
                description = self.resolve_nft_name(t) or description
            out.append(
                Activity(
                    id=tx_hash,
                    type=activity_type,
                    description=description,
                    timestamp=_transfer_timestamp_ms(t),
                    points=points_for(activity_type),
                    hash=tx_hash,
                    direction=direction,
                    asset=t.get("asset"),
                    token_id=_transfer_token_id(t),
                )
            )
        return out

    def scan(self, address: str, force_refresh: bool = False) -> ScanResult:
        record = db.session.get(UserActivityRecord, address)
        should, current_block = self.should_scan(record, force_refresh)
        if not should:
            return ScanResult(False, [], record.last_scanned_block if record else None)

        if current_block is None:
            current_block = self._current_block()
            if current_block is None:
                return ScanResult(False, [], record.last_scanned_block if record else None)

        full_scan = record is None or force_refresh or not record.is_initial_scan_complete
        from_block = 0 if full_scan or record.last_scanned_block is None else record.last_scanned_block + 1

        inbound, outbound = self.fetch_transfers(address, from_block)
        new = self.build_activities(outbound, DIRECTION_OUTBOUND) + self.build_activities(inbound, DIRECTION_INBOUND)

        existing = get_stored_activities(address) if record else []
        merged = merge_activities(new, existing)
        save_activity_record(address, merged, current_block, True)

        current_app.logger.info(
            "Scan completed for %s: %s activities found, scanned to block %s", address, len(new), current_block
        )
        return ScanResult(True, new, current_block)


def get_scanner() -> ActivityScanner:
    scanner = current_app.extensions.get("activity_scanner")
    if scanner is None:
        size = int(os.getenv("NFT_NAME_CACHE_SIZE", "512"))
        scanner = ActivityScanner(AlchemyClient.from_env(), NftNameCache(size))
        current_app.extensions["activity_scanner"] = scanner
    return scanner
