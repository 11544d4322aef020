from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Mapping, Optional

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import PayloadMalformed, PlayerUnresolved

_INT64_MAX = 2**63 - 1

# Postgres NUMERIC limits for the ledger reward_amount column
_NUMERIC_MAX_INT_DIGITS = 131072
_NUMERIC_MAX_SCALE = 16383


class SsvCallback(BaseModel):
    """Declared fields of a verified callback."""

    transaction_id: str = Field(..., min_length=1, max_length=255)
    reward_amount: Decimal
    reward_item: str = Field(..., min_length=1, max_length=100)
    user_id: Optional[str] = None
    custom_data: Optional[str] = None
    timestamp: Optional[str] = None
    ad_network: Optional[str] = None
    ad_unit: Optional[str] = None
    key_id: Optional[int] = None

    @field_validator("transaction_id", "reward_item", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("reward_amount")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("reward_amount must be finite")
        if v < 0:
            raise ValueError("reward_amount must not be negative")
        if v.adjusted() >= _NUMERIC_MAX_INT_DIGITS or int(v.as_tuple().exponent) < -_NUMERIC_MAX_SCALE:
            raise ValueError("reward_amount is outside the storable range")
        return v

    def player_id(self) -> int:
        """Parse ``user_id`` as a player id or raise ``PlayerUnresolved``."""
        raw = (self.user_id or "").strip()
        if not raw:
            raise PlayerUnresolved("no user_id on callback")
        try:
            value = int(raw)
        except ValueError as e:
            raise PlayerUnresolved(f"user_id {raw!r} is not a player id") from e
        if not 0 < value <= _INT64_MAX:
            raise PlayerUnresolved(f"user_id {raw!r} is out of range")
        return value

    def ad_completed_at(self) -> datetime:
        if self.timestamp:
            try:
                return datetime.fromtimestamp(int(self.timestamp) / 1000, tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                pass
        logger.bind(transaction_id=self.transaction_id, key_id=self.key_id).warning(
            f"Missing or unparseable SSV timestamp {self.timestamp!r}; using current time"
        )
        return datetime.now(timezone.utc)


def parse_callback(params: Mapping[str, str]) -> SsvCallback:
    try:
        return SsvCallback(
            transaction_id=params.get("transaction_id"),
            reward_amount=params.get("reward_amount"),
            reward_item=params.get("reward_item"),
            user_id=params.get("user_id"),
            custom_data=params.get("custom_data"),
            timestamp=params.get("timestamp"),
            ad_network=params.get("ad_network"),
            ad_unit=params.get("ad_unit"),
            key_id=params.get("key_id"),
        )
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise PayloadMalformed(f"invalid fields: {', '.join(fields)}") from e
