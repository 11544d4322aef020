import base64
import os
import sqlite3
import sys
import threading
from contextlib import contextmanager
from urllib.parse import urlencode

import pytest
import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from loguru import logger

sys.path.insert(
    0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
)
from ssv_rewards.infra import db  # noqa: E402
from ssv_rewards.ssv import keys as keys_mod  # noqa: E402
from ssv_rewards.ssv.keys import KeyDirectoryCache  # noqa: E402
from ssv_rewards.ssv.verifier import canonical_message  # noqa: E402

KEY_ID = 7


class SQLiteCursor:
    def __init__(self, cursor):
        self.cur = cursor

    def execute(self, sql, params=None):
        # sqlite has no row locks; the whole connection is serialized by the fixture
        sql = sql.replace(" FOR UPDATE", "")
        if params is not None:
            sql = sql.replace("%s", "?")
            self.cur.execute(sql, params)
        else:
            self.cur.execute(sql)
        return self

    @property
    def rowcount(self):
        return self.cur.rowcount

    def fetchone(self):
        return self.cur.fetchone()

    def fetchall(self):
        return self.cur.fetchall()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cur.close()


class SQLiteConn:
    def __init__(self, conn):
        self.conn = conn

    def cursor(self):
        return SQLiteCursor(self.conn.cursor())

    def commit(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    def close(self):
        pass


@pytest.fixture
def db_patch(monkeypatch):
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.executescript(
        """
        CREATE TABLE admob_ssv_transactions (
            transaction_id TEXT PRIMARY KEY,
            player_id INTEGER,
            user_id TEXT,
            reward_item TEXT NOT NULL,
            reward_amount TEXT NOT NULL,
            reward_applied INTEGER NOT NULL DEFAULT 0,
            ad_network TEXT,
            ad_unit TEXT,
            custom_data TEXT,
            key_id INTEGER,
            ad_completion_timestamp TIMESTAMP NOT NULL,
            processed_at TIMESTAMP NOT NULL
        );
        CREATE TABLE player_states (
            player_id INTEGER PRIMARY KEY,
            current_score TEXT DEFAULT '0',
            gold_bars TEXT DEFAULT '0',
            updated_at TIMESTAMP
        );
        INSERT INTO player_states (player_id, current_score, gold_bars) VALUES (42, '100', '10');
        """
    )
    wrapper = SQLiteConn(conn)
    unit_of_work = threading.Lock()

    @contextmanager
    def _get_conn():
        with unit_of_work:
            try:
                yield wrapper
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    monkeypatch.setattr(db, "get_conn", lambda: _get_conn())
    return conn


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def signing_key():
    return ec.generate_private_key(ec.SECP256R1())


def public_key_b64(private_key) -> str:
    der = private_key.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return base64.b64encode(der).decode()


@pytest.fixture
def key_directory(monkeypatch, signing_key):
    """Serve a key directory containing ``signing_key`` under KEY_ID and count fetches."""
    state = {"calls": 0, "response": None}

    def fake_get(url, **kwargs):
        state["calls"] += 1
        if state["response"] is not None:
            return state["response"]
        return FakeResponse(
            {"keys": [{"keyId": KEY_ID, "pem": "unused", "base64": public_key_b64(signing_key)}]}
        )

    monkeypatch.setattr(keys_mod, "http_get", fake_get)
    return state


@pytest.fixture
def key_cache(key_directory):
    return KeyDirectoryCache(url="https://keys.test/verifier-keys.json", ttl_seconds=3600, timeout=1)


def sign_params(private_key, params, key_id=KEY_ID) -> str:
    """Return a query string signed the way the ad network signs callbacks."""
    message = canonical_message(params).encode("utf-8")
    der_sig = private_key.sign(message, ec.ECDSA(hashes.SHA256()))
    sig = base64.urlsafe_b64encode(der_sig).decode().rstrip("=")
    return urlencode(list(params) + [("signature", sig), ("key_id", str(key_id))])


@pytest.fixture
def log_records():
    records = []
    handler_id = logger.add(lambda m: records.append(m.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
