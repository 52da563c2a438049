from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from extensions import db


class NotificationToken(db.Model):
    """Push credential handed to us by the Farcaster client.

    Keyed by the string form of the user's FID (webhook) or by the user id the
    client registered with (PUT /api/notification).
    """

    __tablename__ = "notification_tokens"

    user_key = Column(String(64), primary_key=True)
    fid = Column(Integer, nullable=True, index=True)
    token = Column(String(255), nullable=False)
    url = Column(String(1024), nullable=False)
    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)


GLOBAL_NOTIFICATION_PENDING = "pending"
GLOBAL_NOTIFICATION_SENT = "sent"


class GlobalNotification(db.Model):
    """Broadcast stored for sending later (admin API or cron script)."""

    __tablename__ = "global_notifications"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    target_users = Column(JSON, nullable=True)  # None = everyone with a token
    status = Column(String(16), nullable=False, default=GLOBAL_NOTIFICATION_PENDING)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    sent_at = Column(DateTime, nullable=True)

    successful = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    rate_limited = Column(Integer, nullable=False, default=0)
    no_token = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_global_notifications_status", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "target_users": self.target_users,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "results": {
                "successful": self.successful,
                "failed": self.failed,
                "rate_limited": self.rate_limited,
                "no_token": self.no_token,
            },
        }
