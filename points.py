from __future__ import annotations


ACTIVITY_TOKEN_TRANSFER = "token_transfer"
ACTIVITY_NFT_TRANSFER = "nft_transfer"
ACTIVITY_CONTRACT_INTERACTION = "contract_interaction"
ACTIVITY_SWAP = "swap"
ACTIVITY_STAKE = "stake"
ACTIVITY_MINT = "mint"

ACTIVITY_POINTS: dict[str, int] = {
    ACTIVITY_TOKEN_TRANSFER: 10,
    ACTIVITY_NFT_TRANSFER: 25,
    ACTIVITY_CONTRACT_INTERACTION: 15,
    ACTIVITY_SWAP: 30,
    ACTIVITY_STAKE: 20,
    ACTIVITY_MINT: 35,
}

ACTIVITY_TYPES = tuple(ACTIVITY_POINTS)

UNKNOWN_ACTIVITY_POINTS = 5


# Level thresholds, ascending: (min points, title, tier).
# Two label sets are in use for the same thresholds; both are kept and
# surfaced as `level` (title) and `rank_tier` (tier).
LEVELS: list[tuple[int, str, str]] = [
    (0, "Newbie", "Newbie"),
    (50, "HODLer", "Bronze"),
    (100, "Crypto Native", "Silver"),
    (200, "DeFi Master", "Gold"),
    (500, "Whale", "Platinum"),
    (1000, "Diamond Hands", "Diamond"),
]


def points_for(activity_type: str) -> int:
    return ACTIVITY_POINTS.get(activity_type, UNKNOWN_ACTIVITY_POINTS)


def level_index(points: int) -> int:
    idx = 0
    for i, (threshold, _title, _tier) in enumerate(LEVELS):
        if points >= threshold:
            idx = i
    return idx


def compute_level(points: int) -> str:
    return LEVELS[level_index(points)][1]


def compute_rank_tier(points: int) -> str:
    return LEVELS[level_index(points)][2]
