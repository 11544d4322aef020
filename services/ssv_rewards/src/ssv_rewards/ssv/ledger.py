from __future__ import annotations

"""Idempotent reward crediting backed by the SSV transaction ledger.

The ledger row is claimed inside the same database transaction that updates
the player balance, after the player row is locked and before any balance is
written. A concurrent redelivery either blocks on the primary key and then
finds the row, or loses the insert; in both cases nothing is mutated twice.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import psycopg2
from loguru import logger

from ..infra import db
from .errors import DuplicateTransaction, PersistenceFailure, PlayerUnresolved
from .rewards import add_decimal_text, resolve_handler
from .schemas import SsvCallback


@dataclass
class RecordedReward:
    transaction_id: str
    player_id: Optional[int]
    reward_applied: bool
    new_balance: Optional[str] = None


def is_processed(transaction_id: str) -> bool:
    try:
        return db.transaction_exists(transaction_id)
    except psycopg2.Error as e:
        raise PersistenceFailure(f"ledger lookup failed: {e}") from e


def record_reward(callback: SsvCallback) -> RecordedReward:
    """Write the ledger row and, when a player is resolved, credit the reward.

    Raises ``DuplicateTransaction`` when the row already exists and
    ``PersistenceFailure`` when the unit of work cannot be committed.
    """
    tx_id = callback.transaction_id
    try:
        player_id: Optional[int] = callback.player_id()
    except PlayerUnresolved as e:
        logger.bind(transaction_id=tx_id).info(f"SSV callback is unattributed: {e}")
        player_id = None

    log = logger.bind(transaction_id=tx_id, key_id=callback.key_id, player_id=player_id)
    handler = resolve_handler(callback.reward_item)
    new_balance: Optional[str] = None

    try:
        with db.get_conn() as conn:
            with conn.cursor() as cur:
                if player_id is not None and not db.lookup_player(cur, player_id):
                    log.error(f"Player {player_id} not found; transaction will be logged without a reward")
                    player_id = None

                if player_id is not None and handler is None:
                    log.warning(f"Unhandled reward_item {callback.reward_item!r}; reward not applied")
                elif player_id is not None and handler is not None:
                    current = db.get_player_balance(cur, player_id, handler.column)
                    try:
                        new_balance = add_decimal_text(current, callback.reward_amount)
                    except (ValueError, ArithmeticError) as e:
                        log.error(f"Could not parse {handler.column} for player {player_id}: {e}")

                claimed = db.claim_transaction(
                    cur,
                    transaction_id=tx_id,
                    player_id=player_id,
                    user_id=callback.user_id,
                    reward_item=callback.reward_item,
                    reward_amount=str(callback.reward_amount),
                    reward_applied=new_balance is not None,
                    ad_network=callback.ad_network,
                    ad_unit=callback.ad_unit,
                    custom_data=callback.custom_data,
                    key_id=callback.key_id,
                    ad_completion_timestamp=callback.ad_completed_at(),
                    processed_at=datetime.now(timezone.utc),
                )
                if not claimed:
                    raise DuplicateTransaction(tx_id)

                if new_balance is not None and handler is not None:
                    db.set_player_balance(cur, player_id, handler.column, new_balance)
    except psycopg2.Error as e:
        log.error(f"Error saving SSV transaction: {e}")
        raise PersistenceFailure(f"could not persist transaction {tx_id}") from e

    if new_balance is not None and handler is not None:
        log.info(
            f"Granted {callback.reward_amount} {callback.reward_item} to player {player_id}. "
            f"New {handler.column}: {new_balance}"
        )
    else:
        log.info("Transaction logged without a player reward")
    return RecordedReward(
        transaction_id=tx_id,
        player_id=player_id,
        reward_applied=new_balance is not None,
        new_balance=new_balance,
    )
