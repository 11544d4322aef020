from __future__ import annotations

"""Cache of the ad network's rotating verifier keys.

The directory is a JSON document ``{"keys": [{"keyId", "pem", "base64"}]}``.
Only ``keyId`` and ``base64`` are used. The whole key set is swapped in one
assignment; readers of a fresh snapshot never take the lock, and at most one
fetch runs at a time.
"""

import base64
import binascii
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import requests
from loguru import logger

from ..infra.config import settings
from ..infra.http import http_get
from .errors import KeyFetchError


@dataclass(frozen=True)
class CachedKeySet:
    keys: Dict[int, bytes] = field(default_factory=dict)
    expires_at: float = 0.0

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class KeyDirectoryCache:
    def __init__(
        self,
        url: str | None = None,
        ttl_seconds: float | None = None,
        timeout: float | None = None,
        miss_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.url = url or settings.ssv_keys_url
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else settings.ssv_keys_ttl_seconds)
        self.timeout = float(timeout if timeout is not None else settings.ssv_keys_timeout_seconds)
        self.miss_timeout = float(
            miss_timeout if miss_timeout is not None else min(self.timeout, settings.ssv_keys_miss_timeout_seconds)
        )
        self._clock = clock
        self._snapshot: Optional[CachedKeySet] = None
        self._refresh_lock = threading.Lock()
        self.fetch_count = 0

    def get(self, key_id: int) -> Optional[bytes]:
        """Return DER public key bytes for ``key_id`` or None.

        Never raises; a failed refresh is logged and retried on the next call.
        """
        snapshot = self._snapshot
        fresh = snapshot is not None and snapshot.is_fresh(self._clock())
        if fresh and key_id in snapshot.keys:
            return snapshot.keys[key_id]

        # misses on a fresh cache are caller-triggered and queue on the lock;
        # they get the shorter miss timeout
        timeout = self.miss_timeout if fresh else self.timeout
        logger.info(f"Verifier key {key_id} not cached or cache expired; refreshing")
        keys = self._refresh(observed=snapshot, timeout=timeout)
        key = keys.get(key_id)
        if key is None:
            logger.warning(f"Verifier key {key_id} not found after refresh")
        return key

    def force_refresh(self) -> None:
        logger.info("Forcing refresh of verifier keys")
        self._refresh(observed=None, force=True, timeout=self.timeout)

    def _refresh(self, observed: Optional[CachedKeySet], timeout: float, force: bool = False) -> Dict[int, bytes]:
        with self._refresh_lock:
            current = self._snapshot
            # another caller refreshed while we were waiting on the lock
            if not force and current is not None and current is not observed and current.is_fresh(self._clock()):
                logger.info("Verifier keys already refreshed by a concurrent caller")
                return current.keys
            try:
                keys = self._fetch(timeout)
            except KeyFetchError as e:
                logger.error(f"Error fetching verifier keys from {self.url}: {e}")
                return {}
            self._snapshot = CachedKeySet(keys=keys, expires_at=self._clock() + self.ttl_seconds)
            logger.info(f"Fetched and cached {len(keys)} verifier keys")
            return keys

    def _fetch(self, timeout: float) -> Dict[int, bytes]:
        self.fetch_count += 1
        logger.info(f"Fetching verifier keys from {self.url}")
        try:
            resp = http_get(self.url, timeout=timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise KeyFetchError(str(e)) from e
        return parse_key_directory(payload)


def parse_key_directory(payload: object) -> Dict[int, bytes]:
    """Turn the directory document into ``{key_id: der_bytes}``."""
    if not isinstance(payload, dict) or not isinstance(payload.get("keys"), list):
        raise KeyFetchError("key directory has no 'keys' array")
    out: Dict[int, bytes] = {}
    for entry in payload["keys"]:
        if not isinstance(entry, dict):
            continue
        try:
            key_id = int(entry["keyId"])
            der = base64.b64decode(str(entry["base64"]), validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            logger.warning(f"Skipping malformed verifier key entry: {e}")
            continue
        out[key_id] = der
    if not out:
        raise KeyFetchError("key directory contained no usable keys")
    return out


_default_cache: Optional[KeyDirectoryCache] = None
_default_lock = threading.Lock()


def get_key_cache() -> KeyDirectoryCache:
    global _default_cache
    if _default_cache is None:
        with _default_lock:
            if _default_cache is None:
                _default_cache = KeyDirectoryCache()
    return _default_cache
