#!/usr/bin/env python3
"""Send every pending stored broadcast (oldest first).

Intended to be run from a scheduler (e.g., Render Cron).
"""

from app import app
from errors import AppError
from notifications import list_pending_global_notifications, send_global_notification_by_id


def main():
    sent = failed = 0
    totals = {"successful": 0, "failed": 0, "rate_limited": 0, "no_token": 0}

    with app.app_context():
        pending = list_pending_global_notifications()
        for row in pending:
            try:
                result = send_global_notification_by_id(row.id)
            except AppError as e:
                app.logger.warning("broadcast %s not sent: %s", row.id, e.message)
                failed += 1
                continue
            sent += 1
            for k in totals:
                totals[k] += getattr(result, k)

    print({
        "ok": True,
        "broadcasts_sent": sent,
        "broadcasts_failed": failed,
        "total_pending": len(pending),
        **totals,
    })


if __name__ == "__main__":
    main()
