from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from . import ledger
from .errors import DuplicateTransaction, PayloadMalformed, PersistenceFailure, SignatureInvalid
from .schemas import parse_callback
from .verifier import SignatureVerifier, parse_query


class CallbackOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNAUTHENTICATED = "unauthenticated"
    MALFORMED = "malformed"
    FAILED = "failed"

    @property
    def status_code(self) -> int:
        return _STATUS[self]


_STATUS = {
    CallbackOutcome.PROCESSED: 200,
    CallbackOutcome.DUPLICATE: 200,
    CallbackOutcome.UNAUTHENTICATED: 403,
    CallbackOutcome.MALFORMED: 400,
    CallbackOutcome.FAILED: 500,
}


@dataclass
class CallbackResult:
    outcome: CallbackOutcome
    transaction_id: Optional[str] = None
    player_id: Optional[int] = None
    reward_applied: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome.status_code == 200


class CallbackIntake:
    """Verify, validate, deduplicate and credit one ad-network callback."""

    def __init__(self, verifier: Optional[SignatureVerifier] = None) -> None:
        self.verifier = verifier or SignatureVerifier()

    def process(self, raw_query: str) -> CallbackResult:
        pairs = parse_query(raw_query)
        params = dict(pairs)
        tx_id = params.get("transaction_id")
        log = logger.bind(transaction_id=tx_id, key_id=params.get("key_id"))

        try:
            self.verifier.require(pairs, params.get("signature"), params.get("key_id"))
        except SignatureInvalid:
            log.warning("SSV callback verification failed")
            return CallbackResult(CallbackOutcome.UNAUTHENTICATED, transaction_id=tx_id)
        log.info("SSV callback verified")

        try:
            callback = parse_callback(params)
        except PayloadMalformed as e:
            # an authentic message should never get here
            log.error(f"Verified SSV callback is malformed: {e}")
            return CallbackResult(CallbackOutcome.MALFORMED, transaction_id=tx_id)

        try:
            if ledger.is_processed(callback.transaction_id):
                log.warning("Duplicate SSV transaction received")
                return CallbackResult(CallbackOutcome.DUPLICATE, transaction_id=callback.transaction_id)
            recorded = ledger.record_reward(callback)
        except DuplicateTransaction:
            log.warning("SSV transaction claimed by a concurrent delivery")
            return CallbackResult(CallbackOutcome.DUPLICATE, transaction_id=callback.transaction_id)
        except PersistenceFailure as e:
            log.error(f"SSV callback could not be persisted: {e}")
            return CallbackResult(CallbackOutcome.FAILED, transaction_id=callback.transaction_id)

        log.info("Successfully processed SSV callback")
        return CallbackResult(
            CallbackOutcome.PROCESSED,
            transaction_id=recorded.transaction_id,
            player_id=recorded.player_id,
            reward_applied=recorded.reward_applied,
        )
