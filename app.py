from dotenv import load_dotenv
load_dotenv()

import logging
import os
from datetime import datetime

from flask import Flask, jsonify, request
from flask_cors import CORS
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from extensions import db, limiter
from errors import AppError, PersistenceError

app = Flask(__name__)
app.logger.setLevel(getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO))


# -------------------------------
# Client IP resolution
# -------------------------------
# Behind Render's edge proxy remote_addr is the proxy; trust a single hop.
if os.getenv("RENDER") or os.getenv("FLASK_ENV") == "production":
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

_db_url = os.getenv("DATABASE_URL")
if not _db_url:
    if os.getenv("RENDER") == "true":
        raise RuntimeError("DATABASE_URL missing on Render; refusing to use SQLite.")
    _db_url = "sqlite:///basequest.db"

if _db_url.startswith("postgres://"):
    _db_url = _db_url.replace("postgres://", "postgresql://", 1)

app.config["SQLALCHEMY_DATABASE_URI"] = _db_url
app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

# Rate limiting
# - In production, set RATE_LIMIT_STORAGE_URL to a Redis URL for multi-instance correctness.
app.config["RATELIMIT_STORAGE_URI"] = os.getenv("RATE_LIMIT_STORAGE_URL", "memory://")
app.config["RATELIMIT_ENABLED"] = os.getenv("RATELIMIT_ENABLED", "1") == "1"

# Initialize extensions
db.init_app(app)
CORS(app)
limiter.init_app(app)


@app.after_request
def add_api_headers(resp):
    path = request.path or ""
    if path.startswith("/api"):
        resp.headers.setdefault("Cache-Control", "no-store")
        resp.headers["X-Robots-Tag"] = "noindex, nofollow"
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    return resp


# ==================== ERRORS ====================

@app.errorhandler(AppError)
def handle_app_error(e: AppError):
    if e.status_code >= 500:
        app.logger.error("%s: %s", e.reason, e.message)
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(SQLAlchemyError)
def handle_db_error(e: SQLAlchemyError):
    db.session.rollback()
    app.logger.exception("database error")
    err = PersistenceError("Database error")
    return jsonify(err.to_dict()), err.status_code


@app.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({"success": False, "error": e.description, "reason": e.name.lower().replace(" ", "_")}), e.code


@app.errorhandler(Exception)
def handle_unexpected(e: Exception):
    db.session.rollback()
    app.logger.exception("unhandled error")
    return jsonify({"success": False, "error": "Internal server error"}), 500


# ==================== MODULES ====================
# Imported after db is bound so model modules register their tables.
from activity import get_leaderboard, get_user_rank, get_user_stats, normalize_address  # noqa: E402
from activity_api import activity_api  # noqa: E402
from admin_quests import admin_quests  # noqa: E402
from admin_rewards import admin_rewards  # noqa: E402
from notifications_api import notifications_api  # noqa: E402
from quests_api import quests_api  # noqa: E402
from rewards_api import rewards_api  # noqa: E402
from webhook import webhook_api  # noqa: E402


# ==================== LEADERBOARD / STATS ====================

@app.route("/api/leaderboard", methods=["GET"])
@limiter.limit("60 per minute")
def leaderboard():
    try:
        limit = int(request.args.get("limit", 10))
    except (TypeError, ValueError):
        limit = 10
    limit = max(1, min(limit, 100))

    out = {"success": True, "leaderboard": get_leaderboard(limit)}
    wallet = normalize_address(request.args.get("wallet"))
    if wallet:
        out["current_user"] = get_user_rank(wallet)
    return jsonify(out)


@app.route("/api/stats", methods=["GET"])
def stats():
    return jsonify(dict(success=True, **get_user_stats()))


# ==================== HEALTH CHECK ====================

@app.route("/api/health", methods=["GET"])
def health_check():
    try:
        db.session.execute(text("SELECT 1"))
        return jsonify({
            "success": True,
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "database": "connected",
        })
    except SQLAlchemyError as e:
        db.session.rollback()
        return jsonify({
            "success": False,
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.utcnow().isoformat(),
        }), 500


app.register_blueprint(activity_api)
app.register_blueprint(quests_api)
app.register_blueprint(admin_quests)
app.register_blueprint(rewards_api)
app.register_blueprint(admin_rewards)
app.register_blueprint(notifications_api)
app.register_blueprint(webhook_api)

with app.app_context():
    db.create_all()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_ENV", "development") == "development"

    print("=" * 60)
    print(f"{os.getenv('APP_NAME', 'Blue Square')} quest backend")
    print("=" * 60)
    print(f"Database: {_db_url.split('@')[-1]}")
    print(f"Health: http://localhost:{port}/api/health")
    print("=" * 60)

    app.run(host="0.0.0.0", port=port, debug=debug)
