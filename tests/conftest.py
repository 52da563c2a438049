"""
Pytest fixtures for the quest backend. Points the app at a temporary SQLite DB,
disables rate limiting and gives every test a fresh schema.
"""

from __future__ import annotations

import os
import tempfile

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="basequest-tests-")

# Must be set before app.py is imported (it reads config at import time).
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "test.db")
os.environ["RATELIMIT_ENABLED"] = "0"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["NOTIFICATION_BATCH_DELAY_SECONDS"] = "0"
os.environ["APP_URL"] = "https://example.test"
os.environ.pop("REDIS_URL", None)
os.environ.pop("LOCK_REDIS_URL", None)

WALLET = "0x" + "ab" * 20
WALLET_2 = "0x" + "cd" * 20


class FakeIndexer:
    """Stands in for AlchemyClient. Records every call it receives."""

    def __init__(self, block=1000, inbound=None, outbound=None, names=None):
        self.block = block
        self.inbound = list(inbound or [])
        self.outbound = list(outbound or [])
        self.names = dict(names or {})
        self.block_error = None
        self.fail_direction = None
        self.transfer_calls = []
        self.name_calls = []

    def get_current_block_number(self):
        if self.block_error:
            raise self.block_error
        return self.block

    def get_asset_transfers(self, address, direction, from_block=0):
        self.transfer_calls.append((address, direction, from_block))
        if direction == self.fail_direction:
            raise RuntimeError("indexer down")
        return list(self.inbound if direction == "inbound" else self.outbound)

    def get_contract_name(self, contract):
        self.name_calls.append(contract)
        return self.names.get(contract)


def transfer(tx_hash, category="external", to="0x" + "11" * 20, block=100, asset="ETH", **extra):
    t = {
        "hash": tx_hash,
        "category": category,
        "to": to,
        "from": "0x" + "22" * 20,
        "asset": asset,
        "blockNum": hex(block),
        "rawContract": {"address": extra.pop("contract", None)},
    }
    t.update(extra)
    return t


@pytest.fixture
def flask_app():
    from app import app

    return app


@pytest.fixture
def app_ctx(flask_app):
    """App context over a freshly created schema."""
    from extensions import db

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        flask_app.extensions.pop("activity_scanner", None)
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app_ctx):
    return app_ctx.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def fake_indexer(app_ctx):
    """Install a FakeIndexer-backed scanner for the request handlers."""
    from activity import ActivityScanner, NftNameCache

    indexer = FakeIndexer()
    app_ctx.extensions["activity_scanner"] = ActivityScanner(indexer, NftNameCache(8))
    return indexer


@pytest.fixture
def sent(monkeypatch):
    """Patch the notification HTTP call; returns the list of (url, payload) posted."""
    import notifications

    calls = []

    def fake_post(url, payload, timeout=10):
        calls.append((url, payload))
        return 200, {"result": {"successfulTokens": payload["tokens"], "invalidTokens": [], "rateLimitedTokens": []}}

    monkeypatch.setattr(notifications, "_post_json", fake_post)
    return calls
