from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import psycopg2

from .config import settings


def _dsn() -> str:
    return (
        f"dbname={settings.postgres_db} user={settings.postgres_user} "
        f"password={settings.postgres_password} host={settings.postgres_host} port={settings.postgres_port}"
    )


@contextmanager
def get_conn():
    conn = psycopg2.connect(_dsn())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ============ SSV transaction ledger ============


def ensure_ssv_table() -> None:
    sql = (
        "CREATE TABLE IF NOT EXISTS admob_ssv_transactions (\n"
        "  transaction_id VARCHAR(255) PRIMARY KEY,\n"
        "  player_id BIGINT,\n"
        "  user_id TEXT,\n"
        "  reward_item VARCHAR(100) NOT NULL,\n"
        "  reward_amount NUMERIC NOT NULL,\n"
        "  reward_applied BOOLEAN NOT NULL DEFAULT FALSE,\n"
        "  ad_network TEXT,\n"
        "  ad_unit TEXT,\n"
        "  custom_data TEXT,\n"
        "  key_id BIGINT,\n"
        "  ad_completion_timestamp TIMESTAMPTZ NOT NULL,\n"
        "  processed_at TIMESTAMPTZ NOT NULL DEFAULT now()\n"
        ")"
    )
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(sql)
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_admob_ssv_player ON admob_ssv_transactions (player_id)"
            )


def transaction_exists(transaction_id: str) -> bool:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 FROM admob_ssv_transactions WHERE transaction_id=%s", (transaction_id,))
            return cur.fetchone() is not None


def claim_transaction(
    cur: Any,
    *,
    transaction_id: str,
    player_id: Optional[int],
    user_id: Optional[str],
    reward_item: str,
    reward_amount: str,
    reward_applied: bool,
    ad_network: Optional[str],
    ad_unit: Optional[str],
    custom_data: Optional[str],
    key_id: Optional[int],
    ad_completion_timestamp: datetime,
    processed_at: datetime,
) -> bool:
    """Insert the ledger row inside the caller's transaction.

    Returns False when the transaction id is already present; the primary key
    makes concurrent redeliveries collapse to a single row.
    """
    cur.execute(
        "INSERT INTO admob_ssv_transactions (transaction_id, player_id, user_id, reward_item, reward_amount, "
        "reward_applied, ad_network, ad_unit, custom_data, key_id, ad_completion_timestamp, processed_at) "
        "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s) "
        "ON CONFLICT (transaction_id) DO NOTHING",
        (
            transaction_id,
            player_id,
            user_id,
            reward_item,
            reward_amount,
            reward_applied,
            ad_network,
            ad_unit,
            custom_data,
            key_id,
            ad_completion_timestamp,
            processed_at,
        ),
    )
    return cur.rowcount == 1


# ============ Player store hooks ============
# player_states is owned by the player service; only named balances are touched here.
# Column names come from the reward handler registry, never from request input.


def lookup_player(cur: Any, player_id: int) -> bool:
    """Check the player exists and lock its state row for this transaction."""
    cur.execute("SELECT player_id FROM player_states WHERE player_id=%s FOR UPDATE", (player_id,))
    return cur.fetchone() is not None


def get_player_balance(cur: Any, player_id: int, column: str) -> Optional[str]:
    cur.execute(f"SELECT {column} FROM player_states WHERE player_id=%s", (player_id,))
    row = cur.fetchone()
    if not row:
        return None
    return None if row[0] is None else str(row[0])


def set_player_balance(cur: Any, player_id: int, column: str, value: str) -> None:
    cur.execute(
        f"UPDATE player_states SET {column}=%s, updated_at=%s WHERE player_id=%s",
        (value, datetime.now(timezone.utc), player_id),
    )
