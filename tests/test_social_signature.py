import json

from app.services.social.signature import compute_signature, respond_to_challenge, verify_signature

SECRET = "unit-secret"
BODY = json.dumps({"object": "page", "entry": [{"id": "1", "messaging": []}]}).encode()


def test_valid_signature_verifies():
    assert verify_signature(BODY, compute_signature(BODY, SECRET), SECRET)


def test_uppercase_hex_digest_verifies():
    header = compute_signature(BODY, SECRET)
    prefix, digest = header.split("=", 1)
    assert verify_signature(BODY, f"{prefix}={digest.upper()}", SECRET)


def test_str_body_is_encoded_before_hashing():
    assert verify_signature(BODY.decode(), compute_signature(BODY, SECRET), SECRET)


def test_any_single_byte_mutation_fails():
    header = compute_signature(BODY, SECRET)
    for index in range(len(BODY)):
        mutated = bytearray(BODY)
        mutated[index] ^= 0x01
        assert not verify_signature(bytes(mutated), header, SECRET), index


def test_wrong_secret_fails():
    assert not verify_signature(BODY, compute_signature(BODY, "other"), SECRET)


def test_missing_secret_fails_closed():
    header = compute_signature(BODY, SECRET)
    assert not verify_signature(BODY, header, None)
    assert not verify_signature(BODY, header, "")


def test_missing_or_malformed_header_fails():
    digest = compute_signature(BODY, SECRET).split("=", 1)[1]
    assert not verify_signature(BODY, None, SECRET)
    assert not verify_signature(BODY, "", SECRET)
    assert not verify_signature(BODY, digest, SECRET)
    assert not verify_signature(BODY, f"sha1={digest}", SECRET)
    assert not verify_signature(BODY, "sha256=not-hex-é", SECRET)


def test_challenge_echoed_on_match():
    assert respond_to_challenge("subscribe", "tok", "12345", "tok") == "12345"


def test_challenge_rejected():
    assert respond_to_challenge("subscribe", "wrong", "12345", "tok") is None
    assert respond_to_challenge("unsubscribe", "tok", "12345", "tok") is None
    assert respond_to_challenge("subscribe", "tok", "12345", None) is None
    assert respond_to_challenge("subscribe", None, "12345", "tok") is None
    assert respond_to_challenge("subscribe", "tok", None, "tok") is None
