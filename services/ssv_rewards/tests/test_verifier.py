import base64
import random
from urllib.parse import urlencode

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from conftest import KEY_ID, FakeResponse, public_key_b64, sign_params
from ssv_rewards.ssv.verifier import (
    SignatureVerifier,
    canonical_message,
    normalize_signature,
    parse_query,
)

PARAMS = [
    ("ad_network", "5450213213286189855"),
    ("ad_unit", "1234567890"),
    ("custom_data", "level 3"),
    ("reward_amount", "5"),
    ("reward_item", "GoldBars"),
    ("timestamp", "1716600000000"),
    ("transaction_id", "T1"),
    ("user_id", "42"),
]


def test_canonical_message_sorts_and_excludes_signature_fields():
    pairs = parse_query("user_id=42&signature=abc&reward_item=Gold%20Bars&key_id=7&ad_unit=9")
    assert canonical_message(pairs) == "ad_unit=9&reward_item=Gold Bars&user_id=42"


def test_canonical_message_decodes_each_value_once():
    pairs = parse_query("custom_data=a%2520b&reward_item=x+y")
    assert canonical_message(pairs) == "custom_data=a%20b&reward_item=x y"


def test_canonical_message_is_order_independent():
    shuffled = list(PARAMS)
    random.Random(3).shuffle(shuffled)
    assert canonical_message(shuffled) == canonical_message(PARAMS)


def test_normalize_signature_padding():
    assert normalize_signature("ab-_") == "ab+/"
    assert normalize_signature("abcdef") == "abcdef=="
    assert normalize_signature("abcdefg") == "abcdefg="


def test_valid_signature_verifies(signing_key, key_cache):
    verifier = SignatureVerifier(key_cache)
    assert verifier.verify_query(sign_params(signing_key, PARAMS)) is True


def test_permuted_query_still_verifies(signing_key, key_cache):
    query = sign_params(signing_key, PARAMS)
    pairs = parse_query(query)
    random.Random(11).shuffle(pairs)
    verifier = SignatureVerifier(key_cache)
    assert verifier.verify_query(urlencode(pairs)) is True


def test_tampered_message_fails(signing_key, key_cache):
    query = sign_params(signing_key, PARAMS)
    tampered = query.replace("reward_amount=5", "reward_amount=4")
    assert SignatureVerifier(key_cache).verify_query(tampered) is False


def test_single_bit_flip_in_signature_fails(signing_key, key_cache):
    message = canonical_message(PARAMS).encode()
    der_sig = bytearray(signing_key.sign(message, ec.ECDSA(hashes.SHA256())))
    der_sig[-1] ^= 0x01
    sig = base64.urlsafe_b64encode(bytes(der_sig)).decode().rstrip("=")
    pairs = list(PARAMS)
    assert SignatureVerifier(key_cache).verify(pairs, sig, str(KEY_ID)) is False


def test_unknown_key_id_refreshes_once_and_fails(signing_key, key_cache, key_directory):
    query = sign_params(signing_key, PARAMS, key_id=8)
    assert SignatureVerifier(key_cache).verify_query(query) is False
    assert key_directory["calls"] == 1


def test_empty_cache_fetches_once_then_verifies(signing_key, key_cache, key_directory):
    verifier = SignatureVerifier(key_cache)
    assert verifier.verify_query(sign_params(signing_key, PARAMS)) is True
    assert verifier.verify_query(sign_params(signing_key, PARAMS)) is True
    assert key_directory["calls"] == 1


def test_key_from_another_signer_fails(key_cache):
    other = ec.generate_private_key(ec.SECP256R1())
    assert SignatureVerifier(key_cache).verify_query(sign_params(other, PARAMS)) is False


def test_non_p256_key_is_rejected(key_cache, key_directory):
    p384 = ec.generate_private_key(ec.SECP384R1())
    key_directory["response"] = FakeResponse({"keys": [{"keyId": KEY_ID, "base64": public_key_b64(p384)}]})
    message = canonical_message(PARAMS).encode()
    sig = base64.urlsafe_b64encode(p384.sign(message, ec.ECDSA(hashes.SHA256()))).decode()
    assert SignatureVerifier(key_cache).verify(list(PARAMS), sig, str(KEY_ID)) is False


def test_garbage_inputs_return_false(key_cache):
    verifier = SignatureVerifier(key_cache)
    pairs = list(PARAMS)
    assert verifier.verify(pairs, None, str(KEY_ID)) is False
    assert verifier.verify(pairs, "c2ln", None) is False
    assert verifier.verify(pairs, "c2ln", "seven") is False
    assert verifier.verify(pairs, "not*base64", str(KEY_ID)) is False
    assert verifier.verify(pairs, "a", str(KEY_ID)) is False
    assert verifier.verify([], "c2ln", str(KEY_ID)) is False
