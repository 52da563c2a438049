from datetime import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from extensions import db


class UserActivityRecord(db.Model):
    """Per-address activity aggregate.

    `total_points` is the sum of the stored wallet_activities rows;
    `combined_points` caches total_points + quest points and is refreshed on
    every scan merge, manual insert and quest completion.
    """

    __tablename__ = "user_activity_records"

    address = Column(String(42), primary_key=True)
    total_points = Column(Integer, nullable=False, default=0)
    combined_points = Column(Integer, nullable=False, default=0)
    level = Column(String(30), nullable=False, default="Newbie")
    rank_tier = Column(String(30), nullable=False, default="Newbie")
    last_scanned_block = Column(BigInteger, nullable=True)
    is_initial_scan_complete = Column(Boolean, nullable=False, default=False)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_activity_records_combined", "combined_points"),
    )


class WalletActivity(db.Model):
    __tablename__ = "wallet_activities"

    id = Column(Integer, primary_key=True)
    address = Column(String(42), ForeignKey("user_activity_records.address"), nullable=False, index=True)
    activity_id = Column(String(160), nullable=False)
    dedupe_key = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    timestamp = Column(BigInteger, nullable=False)  # ms
    points = Column(Integer, nullable=False, default=0)
    hash = Column(String(80), nullable=False)
    direction = Column(String(10), nullable=False)
    asset = Column(String(120), nullable=True)
    token_id = Column(String(120), nullable=True)

    __table_args__ = (
        UniqueConstraint("address", "dedupe_key", name="uq_wallet_activity_dedupe"),
        Index("idx_wallet_activities_address_ts", "address", "timestamp"),
    )
