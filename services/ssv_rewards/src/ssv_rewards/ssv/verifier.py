from __future__ import annotations

"""Canonical message reconstruction and ECDSA verification of SSV callbacks.

The ad network signs ``name=value`` pairs of every query parameter except
``signature`` and ``key_id``, sorted by name and joined by ``&``, with
ECDSA P-256 / SHA-256 and sends the DER signature as unpadded URL-safe base64.
"""

import base64
import binascii
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from loguru import logger

from .errors import SignatureInvalid
from .keys import KeyDirectoryCache, get_key_cache

EXCLUDED_PARAMS = frozenset({"signature", "key_id"})


def parse_query(raw_query: str) -> List[Tuple[str, str]]:
    """Split a raw query string into ordered pairs, decoding each value once."""
    return parse_qsl((raw_query or "").lstrip("?"), keep_blank_values=True)


def canonical_message(pairs: Iterable[Tuple[str, str]]) -> str:
    merged: Dict[str, List[str]] = {}
    for name, value in pairs:
        if name in EXCLUDED_PARAMS:
            continue
        merged.setdefault(name, []).append(value)
    return "&".join(f"{name}={','.join(merged[name])}" for name in sorted(merged))


def normalize_signature(signature: str) -> str:
    """Convert URL-safe base64 to padded standard base64."""
    s = signature.replace("-", "+").replace("_", "/")
    rem = len(s) % 4
    if rem == 2:
        s += "=="
    elif rem == 3:
        s += "="
    return s


def decode_signature(signature: str) -> bytes:
    return base64.b64decode(normalize_signature(signature), validate=True)


def load_verifier_key(der: bytes) -> ec.EllipticCurvePublicKey:
    key = serialization.load_der_public_key(der)
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256R1):
        raise ValueError("verifier key is not an ECDSA P-256 public key")
    return key


def verify_message(der_key: bytes, message: bytes, signature: bytes) -> bool:
    key = load_verifier_key(der_key)
    try:
        key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return False
    return True


class SignatureVerifier:
    def __init__(self, key_cache: Optional[KeyDirectoryCache] = None) -> None:
        self._key_cache = key_cache

    @property
    def key_cache(self) -> KeyDirectoryCache:
        return self._key_cache or get_key_cache()

    def verify(self, pairs: List[Tuple[str, str]], signature: Optional[str], key_id: Optional[str]) -> bool:
        """Return True only when the callback was signed by the ad network.

        Any failure (missing input, unknown key, decode or import error) is
        logged and reported as False.
        """
        log = logger.bind(transaction_id=dict(pairs or ()).get("transaction_id"), key_id=key_id)
        if not pairs or not signature or not key_id:
            log.warning("SSV verification failed: missing query, signature or key_id")
            return False
        try:
            kid = int(key_id)
        except ValueError:
            log.warning("SSV verification failed: unparseable key_id")
            return False

        der = self.key_cache.get(kid)
        if der is None:
            log.warning(f"SSV verification failed: no public key for key_id {kid}")
            return False

        content = canonical_message(pairs)
        try:
            sig = decode_signature(signature)
            valid = verify_message(der, content.encode("utf-8"), sig)
        except (binascii.Error, ValueError, UnsupportedAlgorithm) as e:
            log.error(f"SSV verification error for key_id {kid}: {type(e).__name__}: {e}")
            return False
        log.info(f"SSV verification for key_id {kid}: content={content!r} valid={valid}")
        return valid

    def verify_query(self, raw_query: str) -> bool:
        pairs = parse_query(raw_query)
        params = dict(pairs)
        return self.verify(pairs, params.get("signature"), params.get("key_id"))

    def require(self, pairs: List[Tuple[str, str]], signature: Optional[str], key_id: Optional[str]) -> None:
        if not self.verify(pairs, signature, key_id):
            raise SignatureInvalid(f"signature rejected for key_id {key_id}")
